# Generated manually for the analytics pipeline models

from django.core.serializers.json import DjangoJSONEncoder
from django.db import migrations, models
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="AnalyticsEvent",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "event_name",
                    models.CharField(
                        db_index=True,
                        help_text="Catalog event name (e.g., 'zone.created')",
                        max_length=120,
                    ),
                ),
                ("domain", models.CharField(db_index=True, max_length=64)),
                ("schema_version", models.PositiveSmallIntegerField(default=1)),
                ("entity_type", models.CharField(max_length=64)),
                ("entity_id", models.CharField(blank=True, max_length=128, null=True)),
                (
                    "entity_external_id",
                    models.CharField(blank=True, max_length=255, null=True),
                ),
                ("actor_type", models.CharField(blank=True, max_length=64, null=True)),
                ("actor_id", models.CharField(blank=True, max_length=128, null=True)),
                ("actor_label", models.CharField(blank=True, max_length=255, null=True)),
                (
                    "tenant_id",
                    models.CharField(blank=True, db_index=True, max_length=128, null=True),
                ),
                ("source", models.CharField(default="api", max_length=64)),
                ("channel", models.CharField(blank=True, max_length=64, null=True)),
                ("correlation_id", models.CharField(blank=True, max_length=128, null=True)),
                ("occurred_at", models.DateTimeField(db_index=True)),
                ("received_at", models.DateTimeField(auto_now_add=True)),
                ("metadata", models.JSONField(blank=True, default=dict, encoder=DjangoJSONEncoder)),
                (
                    "ingested_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Set once when the warehouse accepted the event",
                        null=True,
                    ),
                ),
                ("ingestion_attempts", models.PositiveIntegerField(default=0)),
                ("last_ingestion_error", models.TextField(blank=True, null=True)),
                (
                    "next_ingest_attempt_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Eligible for delivery once this is in the past (null = now)",
                        null=True,
                    ),
                ),
                (
                    "retention_expires_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Purged after this instant; set only after ingestion",
                        null=True,
                    ),
                ),
                (
                    "abandoned_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Set when the configured attempt cap is reached",
                        null=True,
                    ),
                ),
                ("lease_owner", models.CharField(blank=True, max_length=64, null=True)),
                ("lease_expires_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "db_table": "analytics_events",
                "ordering": ["-occurred_at"],
                "indexes": [
                    models.Index(
                        fields=["ingested_at", "next_ingest_attempt_at"],
                        name="analytics_ev_pending_idx",
                    ),
                    models.Index(
                        fields=["retention_expires_at"],
                        name="analytics_ev_retention_idx",
                    ),
                    models.Index(
                        fields=["domain", "ingested_at"],
                        name="analytics_ev_domain_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="AnalyticsPipelineRun",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("success", "Success"),
                            ("failed", "Failed"),
                            ("skipped", "Skipped"),
                            ("idle", "Idle"),
                        ],
                        db_index=True,
                        default="success",
                        max_length=16,
                    ),
                ),
                ("started_at", models.DateTimeField(db_index=True)),
                ("finished_at", models.DateTimeField()),
                ("events_processed", models.PositiveIntegerField(default=0)),
                ("events_failed", models.PositiveIntegerField(default=0)),
                ("batches_delivered", models.PositiveIntegerField(default=0)),
                ("purged_events", models.PositiveIntegerField(default=0)),
                ("backfilled_events", models.PositiveIntegerField(default=0)),
                ("triggered_by", models.CharField(default="scheduler", max_length=128)),
                ("last_error", models.TextField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict, encoder=DjangoJSONEncoder)),
            ],
            options={
                "db_table": "analytics_pipeline_runs",
                "ordering": ["-started_at"],
            },
        ),
        migrations.CreateModel(
            name="AnalyticsPipelineControl",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("key", models.CharField(max_length=120, unique=True)),
                ("enabled", models.BooleanField(default=True)),
                ("reason", models.TextField(blank=True, null=True)),
                ("owner", models.CharField(blank=True, max_length=128, null=True)),
                ("ticket", models.CharField(blank=True, max_length=128, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "analytics_pipeline_controls",
            },
        ),
    ]
