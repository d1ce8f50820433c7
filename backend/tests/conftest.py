# tests/conftest.py
"""
Pytest fixtures for Fixnado analytics tests.

- A controllable clock so cycles run at exact instants
- Pipeline settings pointing at a fake warehouse
- An event factory that writes AnalyticsEvent rows directly
- A fake delivery function that records calls and can be told to fail
- A staff API client for the admin endpoints
"""

import logging
from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache
from rest_framework.test import APIClient

from analytics.catalog import EventNames
from analytics.conf import IngestionSettings
from analytics.exceptions import DeliveryError
from analytics.models import AnalyticsEvent
from analytics.recorder import EventRecorder


User = get_user_model()

WAREHOUSE_URL = "https://warehouse.example.com/ingest"


@pytest.fixture(autouse=True)
def _clear_cache():
    """Pipeline state, task locks and alert state all live in the cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def _propagate_app_logs(monkeypatch):
    """App loggers do not propagate in LOGGING; caplog listens on the root logger."""
    monkeypatch.setattr(logging.getLogger("analytics"), "propagate", True)


# =============================================================================
# Time
# =============================================================================

class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def now():
    return datetime(2024, 3, 1, 12, 0, 0, tzinfo=dt_timezone.utc)


@pytest.fixture
def clock(now):
    return FrozenClock(now)


# =============================================================================
# Pipeline Fixtures
# =============================================================================

@pytest.fixture
def pipeline_config():
    """Settings with defaults and a configured warehouse endpoint."""
    return IngestionSettings(
        ingest_endpoint=WAREHOUSE_URL,
        ingest_api_key="test-api-key",
    )


class FakeWarehouse:
    """Stand-in for deliver_batch that records every batch it receives."""

    def __init__(self):
        self.batches = []
        self.error = None

    def fail_with(self, error: Exception):
        self.error = error

    def __call__(self, events, config, *, now=None, client=None):
        self.batches.append([event.id for event in events])
        if self.error is not None:
            raise self.error

    @property
    def delivered_ids(self):
        return [event_id for batch in self.batches for event_id in batch]


@pytest.fixture
def warehouse():
    return FakeWarehouse()


@pytest.fixture
def failing_warehouse(warehouse):
    warehouse.fail_with(
        DeliveryError(
            "Warehouse ingest responded with 500: upstream unavailable",
            status_code=500,
            response_body="upstream unavailable",
        )
    )
    return warehouse


@pytest.fixture
def recorder(db, clock):
    return EventRecorder(clock=clock)


@pytest.fixture
def make_event(db, now):
    """
    Factory for AnalyticsEvent rows.

    Defaults to a due booking.created event that occurred an hour ago.
    """

    def _make_event(**overrides):
        fields = {
            "event_name": EventNames.BOOKING_CREATED,
            "domain": "bookings",
            "entity_type": "booking",
            "entity_id": "booking-1",
            "tenant_id": "company-1",
            "occurred_at": now - timedelta(hours=1),
            "metadata": {"bookingId": "booking-1", "companyId": "company-1"},
            "next_ingest_attempt_at": now - timedelta(hours=1),
        }
        fields.update(overrides)
        return AnalyticsEvent.objects.create(**fields)

    return _make_event


# =============================================================================
# API Fixtures
# =============================================================================

@pytest.fixture
def staff_user(db):
    return User.objects.create_user(
        username="ops",
        email="ops@fixnado.example",
        password="testpass123",
        is_staff=True,
    )


@pytest.fixture
def regular_user(db):
    return User.objects.create_user(
        username="customer",
        email="customer@fixnado.example",
        password="testpass123",
    )


@pytest.fixture
def staff_client(staff_user):
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


@pytest.fixture
def regular_client(regular_user):
    client = APIClient()
    client.force_authenticate(user=regular_user)
    return client
