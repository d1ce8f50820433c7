# tests/test_views.py
"""
Tests for the analytics admin API.
"""

from datetime import timedelta

import pytest
from django.core.cache import cache
from django.urls import reverse

from analytics.ingestion import INGESTION_LOCK_KEY
from analytics.models import AnalyticsPipelineRun


@pytest.mark.django_db
class TestPermissions:

    def test_anonymous_rejected(self, client):
        response = client.get(reverse("analytics:pipeline-status"))
        assert response.status_code in (401, 403)

    def test_non_staff_rejected(self, regular_client):
        response = regular_client.get(reverse("analytics:pipeline-status"))
        assert response.status_code == 403

    def test_non_staff_cannot_pause(self, regular_client):
        response = regular_client.post(reverse("analytics:pipeline-pause"), {}, format="json")
        assert response.status_code == 403


@pytest.mark.django_db
class TestPipelineEndpoints:

    def test_status(self, staff_client, make_event):
        make_event()

        response = staff_client.get(reverse("analytics:pipeline-status"))

        assert response.status_code == 200
        assert response.data["backlog"]["pendingEvents"] == 1
        assert response.data["pipeline"]["enabled"] is True

    def test_pause_and_resume(self, staff_client):
        response = staff_client.post(
            reverse("analytics:pipeline-pause"),
            {"reason": "warehouse migration", "ticket": "OPS-42"},
            format="json",
        )

        assert response.status_code == 200
        assert response.data["enabled"] is False
        assert response.data["owner"] == "ops@fixnado.example"
        assert response.data["ticket"] == "OPS-42"

        response = staff_client.post(reverse("analytics:pipeline-resume"), {}, format="json")

        assert response.status_code == 200
        assert response.data["enabled"] is True
        assert AnalyticsPipelineRun.objects.filter(status="skipped").count() == 2

    def test_run_now(self, staff_client):
        response = staff_client.post(reverse("analytics:pipeline-run"))

        assert response.status_code == 200
        assert response.data["status"] == "idle"
        run = AnalyticsPipelineRun.objects.get()
        assert run.triggered_by == "ops@fixnado.example"

    def test_run_now_respects_ingestion_lock(self, staff_client):
        cache.add(INGESTION_LOCK_KEY, "celery-worker", 60)

        response = staff_client.post(reverse("analytics:pipeline-run"))

        assert response.status_code == 409
        assert not AnalyticsPipelineRun.objects.exists()
        assert cache.get(INGESTION_LOCK_KEY) == "celery-worker"

    def test_run_now_releases_lock(self, staff_client):
        staff_client.post(reverse("analytics:pipeline-run"))
        assert cache.get(INGESTION_LOCK_KEY) is None

    def test_run_now_while_paused(self, staff_client):
        staff_client.post(reverse("analytics:pipeline-pause"), {}, format="json")

        response = staff_client.post(reverse("analytics:pipeline-run"))

        assert response.data["status"] == "skipped"


@pytest.mark.django_db
class TestEventList:

    def test_filters(self, staff_client, make_event, now):
        pending = make_event()
        make_event(ingested_at=now)
        zone = make_event(event_name="zone.created", domain="zones", entity_type="zone")

        url = reverse("analytics:event-list")

        by_domain = staff_client.get(url, {"domain": "zones"})
        assert [row["id"] for row in by_domain.data] == [str(zone.id)]

        only_pending = staff_client.get(url, {"pending": "true", "domain": "bookings"})
        assert [row["id"] for row in only_pending.data] == [str(pending.id)]

        by_tenant = staff_client.get(url, {"tenant_id": "company-1"})
        assert len(by_tenant.data) == 3

    def test_newest_first(self, staff_client, make_event, now):
        old = make_event(occurred_at=now - timedelta(days=1))
        new = make_event(occurred_at=now - timedelta(minutes=1))

        response = staff_client.get(reverse("analytics:event-list"))

        assert [row["id"] for row in response.data] == [str(new.id), str(old.id)]


@pytest.mark.django_db
class TestFreshnessEndpoint:

    def test_disabled_returns_204(self, staff_client, settings):
        settings.ANALYTICS_FRESHNESS = None

        response = staff_client.get(reverse("analytics:freshness"))

        assert response.status_code == 204

    def test_summary(self, staff_client, settings):
        settings.ANALYTICS_FRESHNESS = {
            "dataset_threshold_minutes": {"default": 60},
            "backlog_threshold": 100,
            "backlog_age_minutes": 60,
            "failure_streak_threshold": 3,
            "max_run_gap_minutes": 30,
        }

        response = staff_client.get(reverse("analytics:freshness"))

        assert response.status_code == 200
        assert set(response.data) == {"timestamp", "domains", "backlog", "pipeline"}
        assert response.data["backlog"]["status"] == "ok"
