# ops/apps.py
"""Ops app configuration."""

from django.apps import AppConfig


class OpsConfig(AppConfig):
    """Configuration for the ops app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "ops"
    verbose_name = "Operations"
