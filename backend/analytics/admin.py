# analytics/admin.py
"""
Django admin configuration for analytics pipeline models.

Events and runs are read-only in admin: events are written by the
recorder and the ingestion job only. The pipeline control row can be
inspected but pause/resume goes through the API so it is audited.
"""

from django.contrib import admin
from django.utils.html import format_html
import json

from .models import AnalyticsEvent, AnalyticsPipelineControl, AnalyticsPipelineRun


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(AnalyticsEvent)
class AnalyticsEventAdmin(ReadOnlyAdmin):
    """
    Admin interface for AnalyticsEvents.
    """

    list_display = [
        "id_short", "event_name", "entity_display", "tenant_id",
        "occurred_at", "ingestion_state", "ingestion_attempts",
    ]
    list_filter = ["domain", "event_name", "source", "occurred_at"]
    search_fields = ["event_name", "entity_id", "tenant_id", "correlation_id"]
    date_hierarchy = "occurred_at"
    ordering = ["-occurred_at"]

    readonly_fields = [
        "id", "event_name", "domain", "schema_version",
        "entity_type", "entity_id", "entity_external_id",
        "actor_type", "actor_id", "actor_label",
        "tenant_id", "source", "channel", "correlation_id",
        "occurred_at", "received_at", "metadata_formatted",
        "ingested_at", "ingestion_attempts", "last_ingestion_error",
        "next_ingest_attempt_at", "retention_expires_at", "abandoned_at",
        "lease_owner", "lease_expires_at",
    ]

    fieldsets = (
        ("Event Identity", {
            "fields": ("id", "event_name", "domain", "schema_version"),
        }),
        ("Entity", {
            "fields": ("entity_type", "entity_id", "entity_external_id"),
        }),
        ("Context", {
            "fields": (
                "actor_type", "actor_id", "actor_label",
                "tenant_id", "source", "channel", "correlation_id",
            ),
        }),
        ("Metadata", {
            "fields": ("metadata_formatted",),
        }),
        ("Ingestion", {
            "fields": (
                "ingested_at", "ingestion_attempts", "last_ingestion_error",
                "next_ingest_attempt_at", "retention_expires_at", "abandoned_at",
            ),
        }),
        ("Lease", {
            "fields": ("lease_owner", "lease_expires_at"),
            "classes": ("collapse",),
        }),
        ("Timestamps", {
            "fields": ("occurred_at", "received_at"),
        }),
    )

    def id_short(self, obj):
        """Display shortened UUID."""
        return str(obj.id)[:8] + "..."
    id_short.short_description = "ID"

    def entity_display(self, obj):
        return f"{obj.entity_type}#{obj.entity_id}"
    entity_display.short_description = "Entity"

    def ingestion_state(self, obj):
        if obj.ingested_at:
            return "ingested"
        if obj.abandoned_at:
            return "abandoned"
        return "pending"
    ingestion_state.short_description = "State"

    def metadata_formatted(self, obj):
        """Format JSON metadata for display."""
        return format_html(
            "<pre style='white-space: pre-wrap; max-width: 600px;'>{}</pre>",
            json.dumps(obj.metadata, indent=2, default=str),
        )
    metadata_formatted.short_description = "Metadata"


@admin.register(AnalyticsPipelineRun)
class AnalyticsPipelineRunAdmin(ReadOnlyAdmin):
    list_display = [
        "started_at", "status", "events_processed", "events_failed",
        "purged_events", "backfilled_events", "triggered_by",
    ]
    list_filter = ["status", "triggered_by"]
    date_hierarchy = "started_at"
    ordering = ["-started_at"]
    readonly_fields = [
        "status", "started_at", "finished_at", "events_processed", "events_failed",
        "batches_delivered", "purged_events", "backfilled_events", "triggered_by",
        "last_error", "metadata",
    ]


@admin.register(AnalyticsPipelineControl)
class AnalyticsPipelineControlAdmin(ReadOnlyAdmin):
    list_display = ["key", "enabled", "owner", "ticket", "updated_at"]
    readonly_fields = ["key", "enabled", "reason", "owner", "ticket", "updated_at"]
