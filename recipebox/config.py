import os
from pathlib import Path
from urllib.parse import quote_plus, urlparse


PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_INSTANCE_ROOT = Path(
    os.getenv("RECIPEBOX_INSTANCE_PATH", PROJECT_ROOT / "instance")
)
DEFAULT_DB_PATH = Path(
    os.getenv("RECIPEBOX_DB_PATH", DEFAULT_INSTANCE_ROOT / "recipebox.db")
)
DEFAULT_LOG_DIR = Path(
    os.getenv("RECIPEBOX_LOG_DIR", DEFAULT_INSTANCE_ROOT / "logs")
)

DEFAULT_SESSION_LIFETIME_SECONDS = 2 * 60 * 60


def _env_flag(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"0", "false", "no", "off"}:
        return False
    if normalized in {"1", "true", "yes", "on"}:
        return True
    return default


def _normalize_samesite(value: str | None, default: str | None = "Lax") -> str | None:
    if value is None:
        return default
    normalized = value.strip().lower()
    if not normalized:
        return default
    if normalized == "none":
        return "None"
    if normalized in {"lax", "strict"}:
        return normalized.capitalize()
    return default


def _resolve_database_uri() -> str:
    env_url = (os.getenv("DATABASE_URL") or "").strip()
    if env_url:
        return env_url

    host = (os.getenv("DB_HOST") or "").strip()
    name = (os.getenv("DB_NAME") or "").strip()
    if host and name:
        user = quote_plus(os.getenv("DB_USER", ""))
        password = quote_plus(os.getenv("DB_PASSWORD", ""))
        credentials = ""
        if user:
            credentials = f"{user}:{password}@" if password else f"{user}@"
        port = (os.getenv("DB_PORT") or "").strip()
        netloc = f"{host}:{port}" if port else host
        return f"mysql+mysqlconnector://{credentials}{netloc}/{name}"

    return f"sqlite:///{DEFAULT_DB_PATH}"


def _build_engine_options(database_uri: str) -> dict:
    scheme = ""
    try:
        scheme = urlparse(database_uri).scheme or ""
    except ValueError:
        scheme = ""

    if scheme.startswith("sqlite"):
        return {}

    options: dict[str, object] = {
        "pool_pre_ping": True,
        "pool_recycle": int(os.getenv("SQLALCHEMY_POOL_RECYCLE", "300")),
        "pool_timeout": int(os.getenv("SQLALCHEMY_POOL_TIMEOUT", "30")),
    }
    pool_size = os.getenv("SQLALCHEMY_POOL_SIZE")
    if pool_size:
        options["pool_size"] = max(1, int(pool_size))
    max_overflow = os.getenv("SQLALCHEMY_MAX_OVERFLOW")
    if max_overflow is not None and max_overflow != "":
        options["max_overflow"] = int(max_overflow)
    return options


class Config:
    SECRET_KEY = os.getenv("SESSION_SECRET") or os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = _resolve_database_uri()
    SQLALCHEMY_ENGINE_OPTIONS = _build_engine_options(SQLALCHEMY_DATABASE_URI)
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_DB_BOOTSTRAP = os.getenv("AUTO_DB_BOOTSTRAP", "")
    REDIS_URL = os.getenv("REDIS_URL", "")
    SESSION_KEY_PREFIX = os.getenv("SESSION_KEY_PREFIX", "session:v1:")
    SESSION_LIFETIME_SECONDS = int(
        os.getenv("SESSION_LIFETIME_SECONDS", str(DEFAULT_SESSION_LIFETIME_SECONDS))
    )
    SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "Sessionid")
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = _normalize_samesite(os.getenv("SESSION_COOKIE_SAMESITE"), "Lax")
    SESSION_COOKIE_SECURE = _env_flag(os.getenv("SESSION_COOKIE_SECURE"), default=False)
    ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json")
    LOG_TO_STDOUT = os.getenv("LOG_TO_STDOUT", "1").lower() not in {"0", "false", "no"}
    LOG_TO_FILE = os.getenv("LOG_TO_FILE", "1").lower() not in {"0", "false", "no"}
    LOG_DIR = os.getenv("LOG_DIR", str(DEFAULT_LOG_DIR))
    LOG_FILE = os.getenv("LOG_FILE", str(DEFAULT_LOG_DIR / "recipebox.log"))
    LOG_FILE_MAX_BYTES = int(os.getenv("LOG_FILE_MAX_BYTES", str(10 * 1024 * 1024)))
    LOG_FILE_BACKUP_COUNT = int(os.getenv("LOG_FILE_BACKUP_COUNT", "5"))
    REQUEST_ID_HEADER = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")
