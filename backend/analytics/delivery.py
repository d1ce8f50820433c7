# analytics/delivery.py
"""
Warehouse delivery client.

Builds the analytics_events export payload for a batch and POSTs it to
the configured warehouse ingest endpoint. Any 2xx response is success;
everything else (non-2xx, timeout, transport error) raises DeliveryError.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Sequence
import json
import logging

import httpx
from django.core.serializers.json import DjangoJSONEncoder
from django.utils import timezone

from analytics.conf import IngestionSettings
from analytics.exceptions import DeliveryError, IngestionConfigurationError
from analytics.models import AnalyticsEvent


logger = logging.getLogger(__name__)

DATASET_NAME = "analytics_events"
PAYLOAD_SOURCE = "fixnado.api"
_MAX_ERROR_BODY = 500


@dataclass(frozen=True)
class DeliveryReceipt:
    status_code: int
    event_count: int


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_event(event: AnalyticsEvent) -> Dict[str, Any]:
    return {
        "id": str(event.id),
        "domain": event.domain,
        "name": event.event_name,
        "schemaVersion": event.schema_version,
        "occurredAt": _iso(event.occurred_at),
        "receivedAt": _iso(event.received_at),
        "source": event.source,
        "channel": event.channel,
        "tenantId": event.tenant_id,
        "correlationId": event.correlation_id,
        "entity": {
            "type": event.entity_type,
            "id": event.entity_id,
            "externalId": event.entity_external_id,
        },
        "actor": {
            "type": event.actor_type,
            "id": event.actor_id,
            "label": event.actor_label,
        },
        "metadata": event.metadata or {},
    }


def build_ingest_payload(
    events: Sequence[AnalyticsEvent],
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    exported_at = now or timezone.now()
    return {
        "dataset": DATASET_NAME,
        "exportedAt": exported_at.isoformat(),
        "source": PAYLOAD_SOURCE,
        "summary": {
            "totalEvents": len(events),
            "byDomain": dict(Counter(event.domain for event in events)),
            "byEntity": dict(Counter(event.entity_type for event in events)),
        },
        "events": [serialize_event(event) for event in events],
    }


def _build_headers(config: IngestionSettings) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if config.ingest_api_key:
        headers["X-API-Key"] = config.ingest_api_key
    return headers


def deliver_batch(
    events: Sequence[AnalyticsEvent],
    config: IngestionSettings,
    *,
    client: Optional[httpx.Client] = None,
    now: Optional[datetime] = None,
) -> DeliveryReceipt:
    """
    Deliver one batch to the warehouse as a single request.

    Args:
        events: Events to export (sent as one unordered array)
        config: Pipeline settings (endpoint, API key, timeout)
        client: Optional httpx client (tests inject a MockTransport client)
        now: Export timestamp; defaults to the current time

    Raises:
        IngestionConfigurationError: no endpoint configured
        DeliveryError: non-2xx response, timeout or transport failure
    """
    if not config.ingest_endpoint:
        raise IngestionConfigurationError("Analytics ingest endpoint is not configured")

    body = json.dumps(build_ingest_payload(events, now=now), cls=DjangoJSONEncoder)
    headers = _build_headers(config)
    timeout = httpx.Timeout(config.request_timeout_seconds)

    try:
        if client is not None:
            response = client.post(
                config.ingest_endpoint, content=body, headers=headers, timeout=timeout
            )
        else:
            with httpx.Client(timeout=timeout) as local_client:
                response = local_client.post(
                    config.ingest_endpoint, content=body, headers=headers
                )
    except httpx.TimeoutException as exc:
        raise DeliveryError(
            f"Warehouse ingest request timed out after {config.request_timeout_ms} ms"
        ) from exc
    except httpx.HTTPError as exc:
        raise DeliveryError(f"Warehouse ingest request failed: {exc}") from exc

    if not response.is_success:
        response_body = response.text[:_MAX_ERROR_BODY]
        raise DeliveryError(
            f"Warehouse ingest responded with {response.status_code}: {response_body}",
            status_code=response.status_code,
            response_body=response_body,
        )

    logger.info(
        "Delivered analytics batch",
        extra={"event_count": len(events), "status_code": response.status_code},
    )
    return DeliveryReceipt(status_code=response.status_code, event_count=len(events))
