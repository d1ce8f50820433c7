# tests/test_delivery.py
"""
Tests for the warehouse delivery client.

The warehouse is replaced by an httpx.MockTransport so requests never
leave the process.
"""

import json

import httpx
import pytest

from analytics.conf import IngestionSettings
from analytics.delivery import (
    DATASET_NAME,
    PAYLOAD_SOURCE,
    build_ingest_payload,
    deliver_batch,
    serialize_event,
)
from analytics.exceptions import DeliveryError, IngestionConfigurationError


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def events(make_event):
    return [
        make_event(entity_id="b1"),
        make_event(entity_id="b2"),
        make_event(
            event_name="zone.created",
            domain="zones",
            entity_type="zone",
            entity_id="z1",
        ),
    ]


@pytest.mark.django_db
class TestPayload:

    def test_summary_counts(self, events, now):
        payload = build_ingest_payload(events, now=now)

        assert payload["dataset"] == DATASET_NAME
        assert payload["source"] == PAYLOAD_SOURCE
        assert payload["exportedAt"] == now.isoformat()
        assert payload["summary"] == {
            "totalEvents": 3,
            "byDomain": {"bookings": 2, "zones": 1},
            "byEntity": {"booking": 2, "zone": 1},
        }
        assert len(payload["events"]) == 3

    def test_serialized_event_shape(self, make_event):
        event = make_event(
            actor_type="user",
            actor_id="42",
            actor_label="ops@fixnado.example",
            correlation_id="req-1",
        )

        data = serialize_event(event)

        assert data["id"] == str(event.id)
        assert data["name"] == "booking.created"
        assert data["tenantId"] == "company-1"
        assert data["entity"] == {"type": "booking", "id": "booking-1", "externalId": None}
        assert data["actor"] == {"type": "user", "id": "42", "label": "ops@fixnado.example"}
        assert data["correlationId"] == "req-1"
        assert data["occurredAt"] == event.occurred_at.isoformat()


@pytest.mark.django_db
class TestDeliverBatch:

    def test_posts_json_with_api_key(self, events, pipeline_config, now):
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return httpx.Response(202)

        receipt = deliver_batch(events, pipeline_config, client=_client(handler), now=now)

        assert receipt.status_code == 202
        assert receipt.event_count == 3
        assert captured["url"] == pipeline_config.ingest_endpoint
        assert captured["headers"]["content-type"] == "application/json"
        assert captured["headers"]["x-api-key"] == "test-api-key"
        assert captured["body"]["summary"]["totalEvents"] == 3

    def test_no_api_key_header_when_unset(self, events, pipeline_config):
        captured = {}

        def handler(request):
            captured["headers"] = request.headers
            return httpx.Response(200)

        config = pipeline_config.with_overrides(ingest_api_key=None)
        deliver_batch(events, config, client=_client(handler))

        assert "x-api-key" not in captured["headers"]

    def test_non_2xx_raises_with_status_and_body(self, events, pipeline_config):
        def handler(request):
            return httpx.Response(500, text="upstream unavailable")

        with pytest.raises(DeliveryError) as exc_info:
            deliver_batch(events, pipeline_config, client=_client(handler))

        assert exc_info.value.status_code == 500
        assert exc_info.value.response_body == "upstream unavailable"
        assert "500" in str(exc_info.value)

    def test_timeout_raises(self, events, pipeline_config):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(DeliveryError, match="timed out after 15000 ms"):
            deliver_batch(events, pipeline_config, client=_client(handler))

    def test_transport_error_raises(self, events, pipeline_config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(DeliveryError, match="connection refused"):
            deliver_batch(events, pipeline_config, client=_client(handler))

    def test_missing_endpoint(self, events):
        with pytest.raises(IngestionConfigurationError):
            deliver_batch(events, IngestionSettings())
