from __future__ import annotations

from functools import wraps

from flask import Blueprint, abort, current_app, flash, redirect, render_template, url_for
from flask_login import current_user, login_required

from ..extensions import db
from ..models import User


admin_bp = Blueprint("admin", __name__)

PERMISSION_DENIED = "Permission denied"


def admin_required(view):
    """Reject any request whose session user does not hold the admin role.

    Unlike ``login_required`` this never redirects: anonymous and regular
    sessions both get a 403.
    """

    @wraps(view)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated or not current_user.is_admin:
            current_app.logger.warning("admin_access_denied")
            abort(403, description=PERMISSION_DENIED)
        return view(*args, **kwargs)

    return wrapper


@admin_bp.route("/admin", methods=["GET"])
@login_required
@admin_required
def list_users():
    users = User.query.filter_by(is_admin=False).order_by(User.username).all()
    return render_template("admin.html", users=users)


@admin_bp.route("/delete-user/<user_id>", methods=["POST"])
@admin_required
def delete_user(user_id: str):
    # the admin gate runs before the id is parsed
    try:
        user = db.session.get(User, int(user_id))
    except ValueError:
        user = None
    if user is None:
        flash("User not found.", "error")
        return redirect(url_for("admin.list_users"))
    if user.is_admin:
        flash("Admin accounts cannot be deleted.", "error")
        return redirect(url_for("admin.list_users"))

    username, deleted_id = user.username, user.id
    db.session.delete(user)
    db.session.commit()
    current_app.logger.info("user_deleted", extra={"deleted_user_id": deleted_id})
    flash(f"User {username} deleted.", "success")
    return redirect(url_for("admin.list_users"))


__all__ = ["admin_bp", "admin_required"]
