"""Django settings for the checkout API.

Everything environment-specific is read from environment variables with
development defaults. Without ``POSTGRES_DB`` the project runs on SQLite.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure-secret-key")
DEBUG = env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "apps.catalog",
    "apps.checkout",
]

MIDDLEWARE = [
    "core.middleware.RequestIdMiddleware",
    "core.middleware.ApiSizeLimitMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

if os.getenv("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("POSTGRES_DB"),
            "USER": os.getenv("POSTGRES_USER", "app"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", "app"),
            "HOST": os.getenv("POSTGRES_HOST", "localhost"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
            "CONN_MAX_AGE": int(os.getenv("POSTGRES_CONN_MAX_AGE", "60")),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.getenv("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = "UTC"

REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": ["rest_framework.parsers.JSONParser"],
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "UNAUTHENTICATED_USER": None,
    "DEFAULT_THROTTLE_RATES": {
        "checkout_create": os.getenv("THROTTLE_CHECKOUT_CREATE", "1000/min"),
        "checkout_poll": os.getenv("THROTTLE_CHECKOUT_POLL", "1000/min"),
        "checkout_read": os.getenv("THROTTLE_CHECKOUT_READ", "1000/min"),
    },
}

CACHES = {"default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"}}

# ---- Payment gateway ----
PAYMENT_GATEWAY_BASE_URL = os.getenv("PAYMENT_GATEWAY_BASE_URL", "http://localhost:9002/v1")
PAYMENT_GATEWAY_PUBLIC_KEY = os.getenv("PAYMENT_GATEWAY_PUBLIC_KEY", "pub_test_local")
PAYMENT_GATEWAY_PRIVATE_KEY = os.getenv("PAYMENT_GATEWAY_PRIVATE_KEY", "prv_test_local")
PAYMENT_GATEWAY_INTEGRITY_SECRET = os.getenv("PAYMENT_GATEWAY_INTEGRITY_SECRET", "test_integrity_local")
PAYMENT_GATEWAY_WEBHOOK_SECRET = os.getenv("PAYMENT_GATEWAY_WEBHOOK_SECRET", "test_events_local")
USE_HTTP_ADAPTERS = env_bool("USE_HTTP_ADAPTERS", True)

# ---- HTTP client resilience ----
HTTP_TIMEOUT_SECS = float(os.getenv("HTTP_TIMEOUT_SECS", "5.0"))
HTTP_RETRY_MAX = int(os.getenv("HTTP_RETRY_MAX", "2"))
HTTP_RETRY_BACKOFF_BASE = float(os.getenv("HTTP_RETRY_BACKOFF_BASE", "0.15"))
HTTP_RETRY_MAX_SLEEP = float(os.getenv("HTTP_RETRY_MAX_SLEEP", "0.5"))
HTTP_CIRCUIT_FAIL_THRESHOLD = int(os.getenv("HTTP_CIRCUIT_FAIL_THRESHOLD", "5"))
HTTP_CIRCUIT_RESET_TIMEOUT = float(os.getenv("HTTP_CIRCUIT_RESET_TIMEOUT", "30"))

# ---- Checkout ----
CHECKOUT_CURRENCY = os.getenv("CHECKOUT_CURRENCY", "COP")
CHECKOUT_AMOUNT_TOLERANCE_CENTS = int(os.getenv("CHECKOUT_AMOUNT_TOLERANCE_CENTS", "100"))
CHECKOUT_DELIVERY_ETA_DAYS = int(os.getenv("CHECKOUT_DELIVERY_ETA_DAYS", "3"))
CHECKOUT_POLL_MAX_ATTEMPTS = int(os.getenv("CHECKOUT_POLL_MAX_ATTEMPTS", "5"))
CHECKOUT_POLL_DELAY_SECS = float(os.getenv("CHECKOUT_POLL_DELAY_SECS", "3"))
CHECKOUT_POLL_MAX_ATTEMPTS_CAP = int(os.getenv("CHECKOUT_POLL_MAX_ATTEMPTS_CAP", "10"))
# Wall-clock budget for one polling request; keep it below the worker timeout.
CHECKOUT_POLL_DEADLINE_SECS = float(os.getenv("CHECKOUT_POLL_DEADLINE_SECS", "25"))

# ---- Logging ----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_id": {"()": "core.logging_filters.RequestIdFilter"},
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["request_id"],
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "checkout": {"level": LOG_LEVEL},
        "django.request": {"handlers": ["console"], "level": "WARNING", "propagate": False},
    },
}
