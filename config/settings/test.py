# config/settings/test.py
import os

from .base import *  # noqa

DEBUG = False

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

# DB_ENGINE=postgresql runs the suite (including row-lock race tests) on PostgreSQL
if os.getenv("DB_ENGINE") == "postgresql":
    DATABASES["default"] = {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.getenv("DB_NAME", "carepath_test"),
        "USER": os.getenv("DB_USER", "carepath"),
        "PASSWORD": os.getenv("DB_PASSWORD", "carepath"),
        "HOST": os.getenv("DB_HOST", "127.0.0.1"),
        "PORT": os.getenv("DB_PORT", "5432"),
    }

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

LOGGING["root"]["level"] = "WARNING"
