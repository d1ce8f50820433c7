import os
import sys
from pathlib import Path
from dotenv import load_dotenv
import dj_database_url
from datetime import timedelta

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

SECRET_KEY = os.environ.get("SECRET_KEY", os.environ.get("DJANGO_SECRET_KEY", "changeme"))
DEBUG = os.getenv("DEBUG", os.getenv("DJANGO_DEBUG", "True")) == "True"
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "127.0.0.1,localhost").split(",")

# Include Django's manage.py test invocation.
TESTING = (
    "PYTEST_CURRENT_TEST" in os.environ
    or "pytest" in sys.modules
    or "test" in sys.argv
)

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "corsheaders",
    "rest_framework",
    "ops.apps.OpsConfig",  # Operations & observability
    "analytics.apps.AnalyticsConfig",
    "django_celery_beat",  # Periodic tasks
    "django_celery_results",  # Task results
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "ops.metrics.track_request_metrics",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "fixnado_backend.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [BASE_DIR / "templates"],
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

WSGI_APPLICATION = "fixnado_backend.wsgi.application"

# =============================================================================
# Database Configuration
# =============================================================================
DATABASES = {
    "default": dj_database_url.config(
        env="DATABASE_URL",
        default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}",
        conn_max_age=600,
    )
}

AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
        "OPTIONS": {"min_length": 8},
    },
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    )
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=30),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=30),
}

CORS_ALLOWED_ORIGINS = os.getenv(
    "CORS_ALLOWED_ORIGINS",
    "http://localhost:3000"
).split(",")

CORS_ALLOW_CREDENTIALS = True

CSRF_TRUSTED_ORIGINS = os.getenv(
    "CSRF_TRUSTED_ORIGINS",
    "http://localhost:3000"
).split(",")

# =============================================================================
# Cache (pipeline state, task locks, freshness alert state)
# =============================================================================
if TESTING:
    CACHES = {
        "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"},
    }
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.redis.RedisCache",
            "LOCATION": os.getenv("CACHE_URL", os.getenv("REDIS_URL", "redis://127.0.0.1:6379/1")),
        },
    }

# =============================================================================
# Analytics Ingestion Pipeline
# =============================================================================
# Numeric values are clamped to their floors in analytics.conf, never rejected.
ANALYTICS_PIPELINE = {
    "INGEST_ENDPOINT": os.getenv("ANALYTICS_INGEST_ENDPOINT", ""),
    "INGEST_API_KEY": os.getenv("ANALYTICS_INGEST_API_KEY", ""),
    "ENABLED": os.getenv("ANALYTICS_INGEST_ENABLED", "True") == "True",
    "BATCH_SIZE": os.getenv("ANALYTICS_INGEST_BATCH_SIZE", "200"),
    "POLL_INTERVAL_SECONDS": os.getenv("ANALYTICS_INGEST_POLL_INTERVAL_SECONDS", "60"),
    "RETENTION_DAYS": os.getenv("ANALYTICS_RETENTION_DAYS", "395"),
    "REQUEST_TIMEOUT_MS": os.getenv("ANALYTICS_INGEST_TIMEOUT_MS", "15000"),
    "PURGE_BATCH_SIZE": os.getenv("ANALYTICS_PURGE_BATCH_SIZE", "200"),
    "RETRY_SCHEDULE_MINUTES": os.getenv("ANALYTICS_RETRY_SCHEDULE_MINUTES", "5,15,60,240,1440"),
    "LOOKBACK_HOURS": os.getenv("ANALYTICS_BACKFILL_LOOKBACK_HOURS", "48"),
    "LEASE_SECONDS": os.getenv("ANALYTICS_INGEST_LEASE_SECONDS", "300"),
    "MAX_ATTEMPTS": os.getenv("ANALYTICS_INGEST_MAX_ATTEMPTS", ""),
    "CONTROL_CACHE_SECONDS": os.getenv("ANALYTICS_PIPELINE_CONTROL_CACHE_SECONDS", "30"),
}

# Warehouse freshness monitoring is disabled unless a threshold is configured.
ANALYTICS_FRESHNESS = None
if os.getenv("ANALYTICS_FRESHNESS_DEFAULT_MINUTES"):
    ANALYTICS_FRESHNESS = {
        "dataset_threshold_minutes": {
            "default": int(os.getenv("ANALYTICS_FRESHNESS_DEFAULT_MINUTES", "120")),
        },
        "backlog_threshold": int(os.getenv("ANALYTICS_FRESHNESS_BACKLOG_THRESHOLD", "5000")),
        "backlog_age_minutes": int(os.getenv("ANALYTICS_FRESHNESS_BACKLOG_AGE_MINUTES", "180")),
        "failure_streak_threshold": int(os.getenv("ANALYTICS_FRESHNESS_FAILURE_STREAK", "3")),
        "max_run_gap_minutes": int(os.getenv("ANALYTICS_FRESHNESS_MAX_RUN_GAP_MINUTES", "30")),
    }

# =============================================================================
# Celery Configuration (Async Task Processing)
# =============================================================================
REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0")

CELERY_BROKER_URL = REDIS_URL
CELERY_RESULT_BACKEND = "django-db"
CELERY_CACHE_BACKEND = "django-cache"

# Celery settings
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 30 * 60  # 30 minutes
CELERY_WORKER_PREFETCH_MULTIPLIER = 1  # Prevent task hoarding
CELERY_TASK_ALWAYS_EAGER = TESTING

# Celery Beat (periodic tasks)
CELERY_BEAT_SCHEDULER = "django_celery_beat.schedulers:DatabaseScheduler"
CELERY_BEAT_SCHEDULE = {
    "analytics-ingestion": {
        "task": "analytics.tasks.run_analytics_ingestion",
        "schedule": max(int(ANALYTICS_PIPELINE["POLL_INTERVAL_SECONDS"] or 60), 15),
    },
    "analytics-warehouse-freshness": {
        "task": "analytics.tasks.check_warehouse_freshness",
        "schedule": 300,
    },
}

# =============================================================================
# Structured Logging Configuration
# =============================================================================
from ops.logging_config import get_logging_config
LOGGING = get_logging_config(DEBUG)

# =============================================================================
# Observability Configuration
# =============================================================================
# Application version (set via CI/CD)
VERSION = os.getenv("APP_VERSION", "dev")

# Pending analytics events before the health check reports degraded
ANALYTICS_BACKLOG_THRESHOLD = int(os.getenv("ANALYTICS_BACKLOG_THRESHOLD", "5000"))
