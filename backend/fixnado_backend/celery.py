"""
Celery application configuration.

This is the main Celery app for the Fixnado backend.
It drives the analytics ingestion cycle, the warehouse freshness
monitor and any other scheduled background jobs.

Usage:
    # Start worker
    celery -A fixnado_backend worker -l INFO

    # Start beat scheduler (for periodic tasks)
    celery -A fixnado_backend beat -l INFO

    # Start both (development only)
    celery -A fixnado_backend worker -B -l INFO
"""
import os

from celery import Celery

# Set default Django settings
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "fixnado_backend.settings")

# Create Celery app
app = Celery("fixnado_backend")

# Load config from Django settings
app.config_from_object("django.conf:settings", namespace="CELERY")

# Auto-discover tasks from all installed apps
app.autodiscover_tasks()
