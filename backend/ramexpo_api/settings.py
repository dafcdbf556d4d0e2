import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


def _load_env_file(path: Path) -> None:
    """
    Lightweight .env loader so local database and Tally settings live in one
    place; values already present in the environment win.
    """
    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key.lower().startswith("export "):
            key = key[7:].strip()
        if not key:
            continue
        value = value.strip().strip('"').strip("'")
        os.environ.setdefault(key, value)


def _get_csv_env(name: str, default: list[str]) -> list[str]:
    value = os.getenv(name)
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


def _get_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid {name} value: {raw!r}") from exc


def _get_int_env(name: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid {name} value: {raw!r}") from exc


_load_env_file(BASE_DIR / ".env")

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-insecure-key")
DEBUG = os.getenv("DJANGO_DEBUG", "0") == "1"
ALLOWED_HOSTS = _get_csv_env("DJANGO_ALLOWED_HOSTS", ["*"])

if not DEBUG:
    if SECRET_KEY == "dev-only-insecure-key":
        raise RuntimeError("DEBUG is False but DJANGO_SECRET_KEY is still the dev default.")
    if not ALLOWED_HOSTS or "*" in ALLOWED_HOSTS:
        raise RuntimeError("DEBUG is False but DJANGO_ALLOWED_HOSTS is empty or contains '*'.")

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.staticfiles",
    "rest_framework",
    "corsheaders",
    "api",
    "procurement",
    "tally",
]

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "api.middleware.SessionRedirectMiddleware",
]

ROOT_URLCONF = "ramexpo_api.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
            ],
        },
    }
]

WSGI_APPLICATION = "ramexpo_api.wsgi.application"

# PostgreSQL is the runtime database; SQLite needs an explicit double opt-in.
use_sqlite = os.getenv("DJANGO_USE_SQLITE", "0") == "1"
allow_sqlite = os.getenv("DJANGO_ALLOW_SQLITE", "0") == "1"
if use_sqlite and not allow_sqlite:
    raise RuntimeError(
        "SQLite backend is disabled by default. "
        "Set DJANGO_ALLOW_SQLITE=1 only for temporary local tooling."
    )

if use_sqlite:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("DB_NAME", ""),
            "USER": os.getenv("DB_USER", ""),
            "PASSWORD": os.getenv("DB_PASSWORD", ""),
            "HOST": os.getenv("DB_HOST", ""),
            "PORT": os.getenv("DB_PORT", "5432"),
        }
    }

AUTH_PASSWORD_VALIDATORS = []

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("DJANGO_TIME_ZONE", "Asia/Kolkata")
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "loggers": {
        "ramexpo.audit": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "api": {"handlers": ["console"], "level": LOG_LEVEL},
        "procurement": {"handlers": ["console"], "level": LOG_LEVEL},
        "tally": {"handlers": ["console"], "level": LOG_LEVEL},
    },
}

# AuthN/AuthZ configuration. Tokens are issued by the hosted auth provider and
# arrive either as a bearer header or in the session cookie.
AUTH_ENABLED = os.getenv("AUTH_ENABLED", "0") == "1"
AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "")
AUTH_JWKS_URL = os.getenv("AUTH_JWKS_URL", "")
AUTH_ISSUER = os.getenv("AUTH_ISSUER", "")
AUTH_AUDIENCE = os.getenv("AUTH_AUDIENCE", "")
AUTH_ALGORITHMS = _get_csv_env("AUTH_ALGORITHMS", ["HS256"])
AUTH_USER_ID_CLAIM = os.getenv("AUTH_USER_ID_CLAIM", "sub")
AUTH_EMAIL_CLAIM = os.getenv("AUTH_EMAIL_CLAIM", "email")
AUTH_ROLES_CLAIM = os.getenv("AUTH_ROLES_CLAIM", "")
AUTH_COOKIE_NAME = os.getenv("AUTH_COOKIE_NAME", "sb-access-token")

if "AUTH_USE_DB_RBAC" in os.environ:
    AUTH_USE_DB_RBAC = os.getenv("AUTH_USE_DB_RBAC", "0") == "1"
else:
    AUTH_USE_DB_RBAC = True

if AUTH_ENABLED:
    missing = []
    if not AUTH_JWT_SECRET and not AUTH_JWKS_URL:
        missing.append("AUTH_JWT_SECRET or AUTH_JWKS_URL")
    if not AUTH_USER_ID_CLAIM:
        missing.append("AUTH_USER_ID_CLAIM")
    if not AUTH_ALGORITHMS:
        missing.append("AUTH_ALGORITHMS")
    if missing:
        raise RuntimeError(
            "AUTH_ENABLED is true but required settings are missing: "
            + ", ".join(missing)
        )

DEV_AUTH_ENABLED = os.getenv("DEV_AUTH_ENABLED", "0") == "1"
DEV_AUTH_USER_ID = os.getenv("DEV_AUTH_USER_ID", "dev-user")
DEV_AUTH_ROLES = _get_csv_env("DEV_AUTH_ROLES", [])
DEV_AUTH_PERMISSIONS = _get_csv_env("DEV_AUTH_PERMISSIONS", [])

LOGIN_URL = os.getenv("LOGIN_URL", "/login")

# Hosted auth provider admin API (user create/delete).
AUTH_ADMIN_URL = os.getenv("AUTH_ADMIN_URL", "")
AUTH_SERVICE_KEY = os.getenv("AUTH_SERVICE_KEY", "")
AUTH_ADMIN_TIMEOUT = _get_float_env("AUTH_ADMIN_TIMEOUT", 15.0)
ADMIN_USER_EMAIL_DOMAIN = os.getenv("ADMIN_USER_EMAIL_DOMAIN", "ramexpo.com")

# Tally XML-over-HTTP bridge.
TALLY_API_URL = os.getenv("TALLY_API_URL", "http://localhost:9000")
TALLY_ENDPOINT = os.getenv("TALLY_ENDPOINT", TALLY_API_URL)
TALLY_DEFAULT_COMPANY = os.getenv(
    "TALLY_DEFAULT_COMPANY", "Ramasamy Exports & Imports Pvt.Ltd [22 - 23]"
)
TALLY_STATUS_TIMEOUT = _get_float_env("TALLY_STATUS_TIMEOUT", 5.0)
TALLY_COMPANIES_TIMEOUT = _get_float_env("TALLY_COMPANIES_TIMEOUT", 15.0)
TALLY_POST_TIMEOUT = _get_float_env("TALLY_POST_TIMEOUT", 30.0)
TALLY_RETRIES = _get_int_env("TALLY_RETRIES", 1)

CRON_SECRET = os.getenv("CRON_SECRET", "")
EXPORT_API_TOKEN = os.getenv("EXPORT_API_TOKEN", "")
GQR_EXPORT_DEFAULT_LIMIT = _get_int_env("GQR_EXPORT_DEFAULT_LIMIT", 100)

# Only the external GQR feed is served cross-origin.
CORS_URLS_REGEX = r"^/api/gqr-data/.*$"
CORS_ALLOW_ALL_ORIGINS = True
CORS_ALLOW_METHODS = ["GET", "POST", "OPTIONS"]
CORS_ALLOW_HEADERS = ["content-type", "authorization"]
