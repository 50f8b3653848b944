"""
Django settings for the openslots project.

Values that differ between environments are read from the environment with
development-friendly defaults. SQLite is used unless DB_ENGINE is set.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "django-insecure-openslots-dev-key")

DEBUG = os.environ.get("DJANGO_DEBUG", "1") == "1"

ALLOWED_HOSTS = [h for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h]


# Application definition

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "rest_framework",
    "providers",
    "business",
    "clients",
    "appointments",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
]

ROOT_URLCONF = "openslots.urls"

TEMPLATES = []

WSGI_APPLICATION = "openslots.wsgi.application"


# Database

DB_ENGINE = os.environ.get("DB_ENGINE", "")

if DB_ENGINE == "postgresql":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ.get("DB_NAME", "openslots"),
            "USER": os.environ.get("DB_USER", "postgres"),
            "PASSWORD": os.environ.get("DB_PASSWORD", ""),
            "HOST": os.environ.get("DB_HOST", "localhost"),
            "PORT": os.environ.get("DB_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# Internationalization

LANGUAGE_CODE = "en-us"

TIME_ZONE = os.environ.get("DJANGO_TIME_ZONE", "UTC")

USE_I18N = True

USE_TZ = True


# Django REST Framework

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
}


# Scheduling policy (defaults: 60 / 30 / 30 / 15 minutes)

OPENSLOTS_POLICY = {
    "check_in_before_minutes": int(os.environ.get("OPENSLOTS_CHECK_IN_BEFORE_MINUTES", "60")),
    "check_in_after_minutes": int(os.environ.get("OPENSLOTS_CHECK_IN_AFTER_MINUTES", "30")),
    "no_show_grace_minutes": int(os.environ.get("OPENSLOTS_NO_SHOW_GRACE_MINUTES", "30")),
    "slot_granularity_minutes": int(os.environ.get("OPENSLOTS_SLOT_GRANULARITY_MINUTES", "15")),
}


# External calendar

OPENSLOTS_CALENDAR_BACKEND = os.environ.get(
    "OPENSLOTS_CALENDAR_BACKEND",
    "appointments.services.calendar_sync.NullCalendarBackend",
)
OPENSLOTS_CALENDAR_WEBHOOK_URL = os.environ.get("OPENSLOTS_CALENDAR_WEBHOOK_URL", "")
OPENSLOTS_CALENDAR_TIMEOUT = int(os.environ.get("OPENSLOTS_CALENDAR_TIMEOUT", "10"))


# Logging

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "{asctime} {levelname} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        app: {
            "handlers": ["console"],
            "level": os.environ.get("OPENSLOTS_LOG_LEVEL", "INFO"),
            "propagate": False,
        }
        for app in ("providers", "business", "clients", "appointments")
    },
}
