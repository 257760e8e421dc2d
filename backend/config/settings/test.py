"""
Test settings.

SQLite in-memory database, in-memory email outbox, fast hashing.
Set TEST_DATABASE=postgres to run against the PostgreSQL settings from base.
"""

import os

from .base import *  # noqa: F403

DEBUG = False

if os.environ.get("TEST_DATABASE") != "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": ":memory:",
        }
    }

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

JWT_SECRET = "test-secret-key-for-bearer-tokens-only"

LOG_JSON = False
LOG_LEVEL = "WARNING"
