from __future__ import annotations

from pathlib import Path
import os
import secrets
import time
from uuid import uuid4

import click
from flask import Flask, flash, g, redirect, render_template, request, url_for
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException, NotFound
from dotenv import load_dotenv

load_dotenv()

from .config import Config, DEFAULT_INSTANCE_ROOT
from .extensions import db, login_manager
from .logging_utils import setup_logging
from .routes.admin import admin_bp
from .routes.auth import auth_bp
from .routes.recipes import recipes_bp
from .sessions import RedisSessionInterface, init_session_store

LOGIN_REQUIRED_MESSAGE = "Please log in to access this page."


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_path=str(DEFAULT_INSTANCE_ROOT))
    app.config.from_object(Config)

    if test_config:
        app.config.update(test_config)

    Path(app.instance_path).mkdir(parents=True, exist_ok=True)

    setup_logging(app)

    _ensure_secret_key(app)
    _configure_session_security(app)
    _register_request_hooks(app)

    db.init_app(app)
    login_manager.init_app(app)
    login_manager.login_view = "auth.login_form"

    with app.app_context():
        if _should_bootstrap_schema(app):
            db.create_all()
        ensure_admin_account(app)

    @login_manager.user_loader
    def load_user(user_id: str):  # type: ignore[override]
        if not user_id:
            return None
        from .models import User  # local import to avoid circular dependency

        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    @login_manager.unauthorized_handler
    def _unauthorized():
        flash(LOGIN_REQUIRED_MESSAGE, "error")
        return redirect(url_for("auth.login_form"))

    app.register_blueprint(auth_bp)
    app.register_blueprint(recipes_bp)
    app.register_blueprint(admin_bp)

    _register_error_handlers(app)
    _register_cli(app)

    return app


def _configure_session_security(app: Flask) -> None:
    session_name = (app.config.get("SESSION_COOKIE_NAME") or "Sessionid").strip() or "Sessionid"
    app.config["SESSION_COOKIE_NAME"] = session_name

    if not app.config.get("SESSION_COOKIE_SAMESITE"):
        app.config["SESSION_COOKIE_SAMESITE"] = "Lax"

    if app.config.get("TESTING"):
        app.config["SESSION_COOKIE_SECURE"] = False

    store = init_session_store(app)
    app.session_interface = RedisSessionInterface(
        store,
        key_prefix=app.config.get("SESSION_KEY_PREFIX", "session:v1:"),
        lifetime_seconds=int(app.config.get("SESSION_LIFETIME_SECONDS", 7200)),
    )


def _ensure_secret_key(app: Flask) -> None:
    if app.config.get("TESTING"):
        current = str(app.config.get("SECRET_KEY") or "").strip()
        if not current or current == "dev-secret-key":
            app.config["SECRET_KEY"] = "test-secret-key"
        return

    configured = str(app.config.get("SECRET_KEY") or "").strip()
    if configured and configured != "dev-secret-key":
        app.config["SECRET_KEY"] = configured
        return

    secret_path = Path(app.instance_path) / "secret.key"
    if secret_path.exists():
        existing = secret_path.read_text().strip()
        if existing:
            app.config["SECRET_KEY"] = existing
            return

    secret_path.parent.mkdir(parents=True, exist_ok=True)
    new_key = secrets.token_hex(32)
    secret_path.write_text(new_key)
    try:
        os.chmod(secret_path, 0o600)
    except OSError:
        pass
    app.config["SECRET_KEY"] = new_key
    app.logger.warning("secret_key_generated", extra={"path": str(secret_path)})


def _register_request_hooks(app: Flask) -> None:
    request_id_header = app.config.get("REQUEST_ID_HEADER", "X-Request-ID")

    @app.before_request
    def _start_request_timer():
        g.request_id = request.headers.get(request_id_header) or uuid4().hex
        g.request_started_at = time.perf_counter()

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_started_at", None)
        duration_ms = None
        if start is not None:
            duration_ms = round((time.perf_counter() - start) * 1000, 3)

        request_id = getattr(g, "request_id", uuid4().hex)
        response.headers.setdefault(request_id_header, request_id)
        if duration_ms is not None:
            response.headers.setdefault("X-Response-Time", f"{duration_ms}ms")

        app.logger.info(
            "request_completed",
            extra={
                "status_code": response.status_code,
                "duration": duration_ms,
            },
        )
        return response


def _register_error_handlers(app: Flask) -> None:
    def _error_page(title: str, message: str, status_code: int):
        return render_template("error.html", title=title, message=message), status_code

    @app.errorhandler(404)
    def _handle_not_found(error):
        app.logger.warning(
            "not_found",
            extra={"status_code": 404, "error": str(error)},
        )
        return _error_page("Not Found", "This page was not found.", 404)

    @app.errorhandler(HTTPException)
    def _handle_http_exception(error: HTTPException):
        if isinstance(error, NotFound):
            return _handle_not_found(error)
        status_code = error.code or 500
        message = error.description or "Request failed."
        log_fn = app.logger.warning if status_code < 500 else app.logger.error
        log_fn(
            "http_error",
            extra={"status_code": status_code, "error": message},
        )
        return _error_page(error.name, message, status_code)

    @app.errorhandler(Exception)
    def _handle_uncaught_exception(error: Exception):
        if isinstance(error, HTTPException):
            return _handle_http_exception(error)
        if isinstance(error, SQLAlchemyError):
            db.session.rollback()
        app.logger.exception("unhandled_exception")
        return _error_page("Internal Server Error", "Internal Server Error", 500)


def _should_bootstrap_schema(app: Flask) -> bool:
    flag = app.config.get("AUTO_DB_BOOTSTRAP")
    if isinstance(flag, bool):
        return flag
    if isinstance(flag, str):
        normalized = flag.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", "")).lower()
    if uri.startswith("sqlite:"):
        return True

    try:
        inspector = inspect(db.engine)
        existing_tables = set(inspector.get_table_names())
    except SQLAlchemyError as exc:
        app.logger.warning("schema_check_failed", extra={"error": str(exc)})
        return False

    required_tables = {table.name for table in db.Model.metadata.sorted_tables}
    missing_tables = required_tables - existing_tables
    if missing_tables:
        app.logger.info(
            "schema_bootstrap_required",
            extra={"missing_tables": sorted(missing_tables)},
        )
        return True

    return False


def ensure_admin_account(app: Flask) -> None:
    """Create the configured admin account if a password is configured and it is missing.

    An existing non-admin user holding the configured name is left untouched;
    promoting it is an explicit `promote-admin` decision.
    """
    from .models import User

    username = (app.config.get("ADMIN_USERNAME") or "").strip()
    password = app.config.get("ADMIN_PASSWORD") or ""

    if not username or not password:
        return

    try:
        user = User.query.filter_by(username=username).first()
    except SQLAlchemyError as exc:
        db.session.rollback()
        app.logger.warning("admin_bootstrap_skipped", extra={"error": str(exc)})
        return

    if user is not None:
        if not user.is_admin:
            app.logger.warning("admin_bootstrap_conflict", extra={"username": username})
        return

    user = User(username=username, is_admin=True)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    app.logger.info("admin_account_created", extra={"username": username})


def _register_cli(app: Flask) -> None:
    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables that do not exist yet."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("promote-admin")
    @click.argument("username")
    def promote_admin_command(username: str):
        """Grant the admin role to an existing user."""
        from .models import User

        user = User.query.filter_by(username=username).first()
        if user is None:
            raise click.ClickException(f"No user named {username!r}.")
        if user.is_admin:
            click.echo(f"{username} is already an admin.")
            return
        user.is_admin = True
        db.session.commit()
        app.logger.info("admin_role_granted", extra={"username": username})
        click.echo(f"{username} is now an admin.")
