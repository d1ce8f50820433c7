# analytics/models.py
"""
Analytics models for Fixnado.

AnalyticsEvent is the append-only capture table that feeds the data
warehouse. Rows are created by the recorder, mutated only by the ingestion
job (claim, success, failure, backfill) and deleted only by the retention
purge.

AnalyticsPipelineRun is the ledger of ingestion cycles and control actions.

AnalyticsPipelineControl holds the pause/resume switch for the pipeline.
"""

import uuid

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class AnalyticsEvent(models.Model):
    """
    One captured business event awaiting (or done with) warehouse delivery.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    event_name = models.CharField(
        max_length=120,
        db_index=True,
        help_text="Catalog event name (e.g., 'zone.created')",
    )
    domain = models.CharField(max_length=64, db_index=True)
    schema_version = models.PositiveSmallIntegerField(default=1)

    entity_type = models.CharField(max_length=64)
    entity_id = models.CharField(max_length=128, null=True, blank=True)
    entity_external_id = models.CharField(max_length=255, null=True, blank=True)

    actor_type = models.CharField(max_length=64, null=True, blank=True)
    actor_id = models.CharField(max_length=128, null=True, blank=True)
    actor_label = models.CharField(max_length=255, null=True, blank=True)

    tenant_id = models.CharField(max_length=128, null=True, blank=True, db_index=True)

    source = models.CharField(max_length=64, default="api")
    channel = models.CharField(max_length=64, null=True, blank=True)
    correlation_id = models.CharField(max_length=128, null=True, blank=True)

    occurred_at = models.DateTimeField(db_index=True)
    received_at = models.DateTimeField(auto_now_add=True)

    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    # ═══════════════════════════════════════════════════════════════════════════
    # Ingestion state
    # ═══════════════════════════════════════════════════════════════════════════

    ingested_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Set once when the warehouse accepted the event",
    )
    ingestion_attempts = models.PositiveIntegerField(default=0)
    last_ingestion_error = models.TextField(null=True, blank=True)
    next_ingest_attempt_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Eligible for delivery once this is in the past (null = now)",
    )
    retention_expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Purged after this instant; set only after ingestion",
    )
    abandoned_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Set when the configured attempt cap is reached",
    )

    # Claim token so overlapping cycles never deliver the same row
    lease_owner = models.CharField(max_length=64, null=True, blank=True)
    lease_expires_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "analytics_events"
        ordering = ["-occurred_at"]
        indexes = [
            models.Index(
                fields=["ingested_at", "next_ingest_attempt_at"],
                name="analytics_ev_pending_idx",
            ),
            models.Index(fields=["retention_expires_at"], name="analytics_ev_retention_idx"),
            models.Index(fields=["domain", "ingested_at"], name="analytics_ev_domain_idx"),
        ]

    def __str__(self):
        return f"{self.event_name} [{self.entity_type}#{self.entity_id}] @{self.occurred_at}"

    @property
    def is_pending(self) -> bool:
        return self.ingested_at is None and self.abandoned_at is None


class AnalyticsPipelineRun(models.Model):
    """Outcome of one ingestion cycle or pipeline control action."""

    class Status(models.TextChoices):
        SUCCESS = "success", "Success"
        FAILED = "failed", "Failed"
        SKIPPED = "skipped", "Skipped"
        IDLE = "idle", "Idle"

    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.SUCCESS,
        db_index=True,
    )
    started_at = models.DateTimeField(db_index=True)
    finished_at = models.DateTimeField()
    events_processed = models.PositiveIntegerField(default=0)
    events_failed = models.PositiveIntegerField(default=0)
    batches_delivered = models.PositiveIntegerField(default=0)
    purged_events = models.PositiveIntegerField(default=0)
    backfilled_events = models.PositiveIntegerField(default=0)
    triggered_by = models.CharField(max_length=128, default="scheduler")
    last_error = models.TextField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    class Meta:
        db_table = "analytics_pipeline_runs"
        ordering = ["-started_at"]

    def __str__(self):
        return f"{self.status} run @{self.started_at} ({self.events_processed} events)"

    @property
    def duration_ms(self) -> int:
        delta = self.finished_at - self.started_at
        return max(int(delta.total_seconds() * 1000), 0)


class AnalyticsPipelineControl(models.Model):
    """Pause/resume switch for the ingestion pipeline, keyed by control name."""

    key = models.CharField(max_length=120, unique=True)
    enabled = models.BooleanField(default=True)
    reason = models.TextField(null=True, blank=True)
    owner = models.CharField(max_length=128, null=True, blank=True)
    ticket = models.CharField(max_length=128, null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "analytics_pipeline_controls"

    def __str__(self):
        state = "enabled" if self.enabled else "paused"
        return f"{self.key}: {state}"
