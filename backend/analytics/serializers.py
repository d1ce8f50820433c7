# analytics/serializers.py
"""
Serializers for the analytics admin API.
"""

from rest_framework import serializers

from analytics.models import AnalyticsEvent


class AnalyticsEventSerializer(serializers.ModelSerializer):
    """Event listing with its ingestion state."""

    class Meta:
        model = AnalyticsEvent
        fields = [
            'id',
            'event_name',
            'domain',
            'schema_version',
            'entity_type',
            'entity_id',
            'entity_external_id',
            'actor_type',
            'actor_id',
            'actor_label',
            'tenant_id',
            'source',
            'channel',
            'correlation_id',
            'occurred_at',
            'received_at',
            'metadata',
            'ingested_at',
            'ingestion_attempts',
            'last_ingestion_error',
            'next_ingest_attempt_at',
            'retention_expires_at',
            'abandoned_at',
        ]
        read_only_fields = fields


class PipelineControlSerializer(serializers.Serializer):
    """Body of pause/resume requests."""

    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)
    ticket = serializers.CharField(required=False, allow_blank=True, max_length=128)
