"""
Django settings for the ingestion API.

The API is stateless from Django's point of view: no ORM models, no
sessions, no admin. Persistent state lives in the StateStore.
"""

import os

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-secret-key-change-in-production")
DEBUG = os.environ.get("DJANGO_DEBUG", "False").lower() == "true"
ALLOWED_HOSTS = os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver,*").split(",")

# Honor TLS termination at a reverse proxy
SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
USE_X_FORWARDED_HOST = True

INSTALLED_APPS = [
    "ledger_ingest.web",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "ledger_ingest.web.urls"

DATABASES: dict = {}

# Statement PDFs arrive base64-encoded in the request body
DATA_UPLOAD_MAX_MEMORY_SIZE = int(os.environ.get("LEDGER_MAX_UPLOAD_BYTES", 50 * 1024 * 1024))
FILE_UPLOAD_MAX_MEMORY_SIZE = DATA_UPLOAD_MAX_MEMORY_SIZE

USE_TZ = True

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "WARNING",
        },
        "ledger_ingest": {
            "handlers": ["console"],
            "level": "INFO",
        },
    },
}

# Set at runtime by run_server / get_wsgi_application
LEDGER_INGEST_CONFIG = os.environ.get("LEDGER_INGEST_CONFIG", "config.yaml")
# Bearer token required by the API when set
LEDGER_INGEST_TOKEN = os.environ.get("LEDGER_INGEST_TOKEN", "")
