from __future__ import annotations

import re

from flask import Blueprint, current_app, flash, redirect, render_template, request, session, url_for
from flask_login import current_user, login_user, logout_user
from markupsafe import escape
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import User


auth_bp = Blueprint("auth", __name__)

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6
PASSWORD_SYMBOLS = "@$!%*?&"
PASSWORD_PATTERN = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]+$"
)

INVALID_CREDENTIALS = "Invalid username or password."


def _normalize_username(value: str | None) -> str:
    if not isinstance(value, str):
        return ""
    return str(escape(value.strip()))


def _validate_registration(username: str, password: str) -> list[str]:
    errors = []
    if not username:
        errors.append("Username is required.")
    elif len(username) < MIN_USERNAME_LENGTH:
        errors.append(f"Username must be at least {MIN_USERNAME_LENGTH} characters long.")
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
    if not PASSWORD_PATTERN.match(password):
        errors.append(
            "Password must include at least one lowercase letter, one uppercase letter, "
            f"one number, and one special character ({PASSWORD_SYMBOLS})."
        )
    return errors


@auth_bp.route("/login", methods=["GET"])
def login_form():
    if current_user.is_authenticated:
        return redirect(url_for("recipes.index"))
    return render_template("login.html")


@auth_bp.route("/login", methods=["POST"])
def login():
    username = _normalize_username(request.form.get("username"))
    password = request.form.get("password") or ""

    user = User.query.filter_by(username=username).first() if username else None
    if user is None or not user.check_password(password):
        current_app.logger.info("login_failed", extra={"username": username})
        flash(INVALID_CREDENTIALS, "error")
        return redirect(url_for("auth.login"))

    current_app.session_interface.regenerate(session)
    login_user(user)
    session["username"] = user.username
    current_app.logger.info("login_succeeded", extra={"account_id": user.id})
    return redirect(url_for("recipes.index"))


@auth_bp.route("/register", methods=["GET"])
def register_form():
    if current_user.is_authenticated:
        return redirect(url_for("recipes.index"))
    return render_template("register.html")


@auth_bp.route("/register", methods=["POST"])
def register():
    username = _normalize_username(request.form.get("username"))
    password = request.form.get("password") or ""

    errors = _validate_registration(username, password)
    if errors:
        for message in errors:
            flash(message, "error")
        return redirect(url_for("auth.register"))

    if User.query.filter_by(username=username).first():
        flash("Username is already taken.", "error")
        return redirect(url_for("auth.register"))

    user = User(username=username)
    user.set_password(password)
    try:
        db.session.add(user)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("user_registration_failed", extra={"username": username})
        flash("Error registering user.", "error")
        return redirect(url_for("auth.register"))

    current_app.logger.info("user_registered", extra={"account_id": user.id})
    flash("Registration successful. Please log in.", "success")
    return redirect(url_for("auth.login"))


@auth_bp.route("/logout", methods=["GET"])
def logout():
    logout_user()
    try:
        current_app.session_interface.destroy(session)
    except RedisError:
        current_app.logger.warning("session_destroy_failed", exc_info=True)
    return redirect(url_for("auth.login"))


__all__ = ["auth_bp"]
