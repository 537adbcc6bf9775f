"""
Settings for the test suite.

Fills in the environment the deployed settings expect, then swaps Redis
backed services for in-process ones. DATABASE_URL may point at PostgreSQL
to run the row-lock concurrency tests; SQLite is used otherwise.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DEBUG", "False")
os.environ.setdefault("ALLOWED_HOSTS", "testserver,localhost")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECURE_SSL_REDIRECT", "False")
os.environ.setdefault("SESSION_COOKIE_SECURE", "False")
os.environ.setdefault("CSRF_COOKIE_SECURE", "False")
os.environ.setdefault("POLAR_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("POLAR_ACCESS_TOKEN", "polar_test_token")
os.environ.setdefault("POLAR_API_URL", "https://polar.test")

from config.settings import *  # noqa: E402,F401,F403

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "billing-tests",
    }
}
SESSION_ENGINE = "django.contrib.sessions.backends.db"

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

# Fast password hasher (PBKDF2 is too slow for fixtures)
PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []  # noqa: F405
REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}  # noqa: F405

POLAR_MAX_RETRIES = 2
BILLING_REPORT_USAGE_TO_PROVIDER = False

# Accounts open at zero so balances in tests are exactly what the test grants
BILLING_WELCOME_BONUS_CREDITS = 0

BILLING_PRICE_CATALOG = {
    "price_100": 100,
    "500_credits": 500,
    "1000_credits": 1000,
}
BILLING_PLAN_CATALOG = {
    "starter_plan": {"credits": 2000, "interval": "month"},
    "pro_plan": {"credits": 5000, "interval": "month"},
    "annual_plan": {"credits": 60000, "interval": "year"},
}

# No collectstatic in tests, so no manifest to resolve admin assets against
STORAGES = {
    **STORAGES,  # noqa: F405
    "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
}
