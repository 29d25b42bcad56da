from __future__ import annotations

from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for
from flask_login import current_user, login_required

from ..extensions import db
from ..models import Recipe


recipes_bp = Blueprint("recipes", __name__)

RECIPE_NOT_FOUND = "Recipe not found."


def _recipe_for_user(recipe_id: int) -> Recipe | None:
    if not current_user.is_authenticated:
        return None
    return Recipe.query.filter_by(id=recipe_id, user_id=current_user.id).first()


def _read_recipe_form() -> tuple[str, str, str | None]:
    name = (request.form.get("recipeName") or request.form.get("name") or "").strip()
    ingredients = (request.form.get("ingredients") or "").strip()
    if not name:
        return name, ingredients, "Recipe name is required."
    if not ingredients:
        return name, ingredients, "Ingredients are required."
    return name, ingredients, None


@recipes_bp.route("/", methods=["GET"])
@login_required
def index():
    recipes = (
        Recipe.query.filter_by(user_id=current_user.id)
        .order_by(Recipe.created_at.desc(), Recipe.id.desc())
        .all()
    )
    return render_template("index.html", user=current_user.username, recipes=recipes)


@recipes_bp.route("/recipes/new", methods=["GET"])
@login_required
def new_recipe():
    return render_template("new_recipe.html")


@recipes_bp.route("/recipes", methods=["POST"])
@login_required
def create_recipe():
    name, ingredients, error = _read_recipe_form()
    if error:
        flash(error, "error")
        return redirect(url_for("recipes.new_recipe"))

    recipe = Recipe(recipe_name=name, ingredients=ingredients, user_id=current_user.id)
    db.session.add(recipe)
    db.session.commit()
    current_app.logger.info("recipe_created", extra={"recipe_id": recipe.id})
    flash("Recipe added successfully.", "success")
    return redirect(url_for("recipes.index"))


@recipes_bp.route("/recipes/edit/<int:recipe_id>", methods=["GET"])
@login_required
def edit_recipe(recipe_id: int):
    recipe = _recipe_for_user(recipe_id)
    if recipe is None:
        flash(RECIPE_NOT_FOUND, "error")
        return redirect(url_for("recipes.index"))
    return render_template("edit_recipe.html", recipe=recipe)


@recipes_bp.route("/recipes/edit/<int:recipe_id>", methods=["POST"])
@login_required
def update_recipe(recipe_id: int):
    recipe = _recipe_for_user(recipe_id)
    if recipe is None:
        current_app.logger.warning("recipe_update_rejected", extra={"recipe_id": recipe_id})
        flash(RECIPE_NOT_FOUND, "error")
        return redirect(url_for("recipes.index"))

    name, ingredients, error = _read_recipe_form()
    if error:
        flash(error, "error")
        return redirect(url_for("recipes.edit_recipe", recipe_id=recipe_id))

    recipe.recipe_name = name
    recipe.ingredients = ingredients
    db.session.commit()
    current_app.logger.info("recipe_updated", extra={"recipe_id": recipe.id})
    flash("Recipe updated successfully.", "success")
    return redirect(url_for("recipes.index"))


@recipes_bp.route("/recipes/delete/<int:recipe_id>", methods=["POST"])
@login_required
def delete_recipe(recipe_id: int):
    recipe = _recipe_for_user(recipe_id)
    if recipe is None:
        current_app.logger.warning("recipe_delete_rejected", extra={"recipe_id": recipe_id})
        flash(RECIPE_NOT_FOUND, "error")
        return redirect(url_for("recipes.index"))

    db.session.delete(recipe)
    db.session.commit()
    current_app.logger.info("recipe_deleted", extra={"recipe_id": recipe_id})
    flash("Recipe deleted successfully.", "success")
    return redirect(url_for("recipes.index"))


__all__ = ["recipes_bp"]
