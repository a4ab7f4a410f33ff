import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / ".env")


def env_bool(name, default=False):
    val = os.environ.get(name)
    if val is None:
        return default
    return str(val).strip().lower() in ("1", "true", "yes", "on")


def env_int(name, default=0):
    val = os.environ.get(name)
    if val is None or not str(val).strip().lstrip("-").isdigit():
        return default
    return int(val)


SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
DEBUG = env_bool("DEBUG", True)
ALLOWED_HOSTS = [
    h.strip()
    for h in os.environ.get("ALLOWED_HOSTS", "*").split(",")
    if h.strip()
]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # local apps
    "admin_site",
    "student",
    "finance",
    "payments",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "gereecole.urls"

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
                "django.contrib.messages.context_processors.messages",
            ],
        },
    }
]

WSGI_APPLICATION = "gereecole.wsgi.application"

_DB_NAME = os.environ.get("DB_NAME")
if _DB_NAME:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": _DB_NAME,
            "USER": os.environ.get("DB_USER", ""),
            "PASSWORD": os.environ.get("DB_PASSWORD", ""),
            "HOST": os.environ.get("DB_HOST", "localhost"),
            "PORT": os.environ.get("DB_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": str(BASE_DIR / "db.sqlite3"),
        }
    }

LANGUAGE_CODE = "fr-fr"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

EMAIL_BACKEND = os.environ.get(
    "EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend"
)
DEFAULT_FROM_EMAIL = os.environ.get("DEFAULT_FROM_EMAIL", "GéreEcole <no-reply@gereecole.com>")
BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000")

# Celery
CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = env_bool("CELERY_TASK_ALWAYS_EAGER", False)
CELERY_TIMEZONE = TIME_ZONE

# Payment reconciliation
PAYMENT_PROVIDERS = {
    "stripe": {
        "secret": os.environ.get("STRIPE_WEBHOOK_SECRET", ""),
        "delimiter": os.environ.get("STRIPE_REFERENCE_DELIMITER", "__"),
    },
    "mtn": {
        "secret": os.environ.get("MTN_WEBHOOK_SECRET", ""),
        "delimiter": os.environ.get("MTN_REFERENCE_DELIMITER", "_"),
    },
    "wave": {
        "secret": os.environ.get("WAVE_WEBHOOK_SECRET", ""),
        "delimiter": os.environ.get("WAVE_REFERENCE_DELIMITER", "_"),
    },
    "genius": {
        "secret": os.environ.get("GENIUS_WEBHOOK_SECRET", ""),
        "delimiter": os.environ.get("GENIUS_REFERENCE_DELIMITER", "_"),
    },
    "paydunya": {
        "secret": os.environ.get("PAYDUNYA_WEBHOOK_SECRET", ""),
        "delimiter": os.environ.get("PAYDUNYA_REFERENCE_DELIMITER", "_"),
    },
}
PAYMENTS_REFERENCE_CURRENCY = "XOF"
# XOF per EUR, only applied to card checkout amounts.
PAYMENTS_CARD_CONVERSION_RATE = Decimal(os.environ.get("PAYMENTS_CARD_CONVERSION_RATE", "655.957"))
PAYMENTS_AMOUNT_TOLERANCE = env_int("PAYMENTS_AMOUNT_TOLERANCE", 50)
PAYMENTS_BLOCK_ON_AMOUNT_MISMATCH = env_bool("PAYMENTS_BLOCK_ON_AMOUNT_MISMATCH", False)
# 0 keeps processed event markers forever.
PAYMENTS_PROCESSED_EVENT_RETENTION_DAYS = env_int("PAYMENTS_PROCESSED_EVENT_RETENTION_DAYS", 0)
PAYMENTS_SEND_NOTIFICATIONS = env_bool("PAYMENTS_SEND_NOTIFICATIONS", True)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "payments": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "payments.security": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
        "finance": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "admin_site": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "student": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}
