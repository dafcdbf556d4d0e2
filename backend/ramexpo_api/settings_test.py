"""Settings for the test runner: SQLite, debug, no external auth."""
import os

os.environ.setdefault("DJANGO_DEBUG", "1")
os.environ.setdefault("DJANGO_USE_SQLITE", "1")
os.environ.setdefault("DJANGO_ALLOW_SQLITE", "1")
os.environ.setdefault("AUTH_ENABLED", "0")
os.environ.setdefault("AUTH_USE_DB_RBAC", "0")

from ramexpo_api.settings import *  # noqa: E402,F401,F403

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {"null": {"class": "logging.NullHandler"}},
    "root": {"handlers": ["null"]},
}
