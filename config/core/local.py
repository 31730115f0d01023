from .base import *

# Explicit dev mode
DEBUG = True
ALLOWED_HOSTS = ["*"]


# Logging: console from base + error file for local development
LOGGING["handlers"]["file"] = {
    "level": "ERROR",
    "class": "logging.handlers.RotatingFileHandler",
    "filename": "django_errors.log",
    "maxBytes": 5 * 1024 * 1024,
    "backupCount": 3,
    "formatter": "verbose",
}
for _name in ("django", "accounts", "patients"):
    LOGGING["loggers"][_name]["handlers"] = ["console", "file"]
LOGGING["loggers"]["patients"]["level"] = "DEBUG"

# CORS/CSRF relaxed for local development
CORS_ALLOW_ALL_ORIGINS = True

CSRF_COOKIE_SECURE = False
SESSION_COOKIE_SECURE = False
JWT_COOKIE_SECURE = False


CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

CELERY_BROKER_URL = env("CELERY_BROKER_URL", default="redis://localhost:6380/0")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", default=CELERY_BROKER_URL)
