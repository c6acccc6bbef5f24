"""Settings used by the test suite: in-memory SQLite and eager Celery."""
from __future__ import annotations

from .settings import *  # noqa: F401,F403

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

LOG_LEVEL = "WARNING"
LOGGING["loggers"] = {  # noqa: F405
    name: {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False}
    for name in ("directory", "tickets", "workflows")
}
