# tests/test_tasks.py
"""
Tests for the Celery tasks and the run_analytics_ingestion command.

Tasks run eagerly in tests (CELERY_TASK_ALWAYS_EAGER).
"""

import json
from io import StringIO

import pytest
from django.core.cache import cache
from django.core.management import call_command
from django.core.management.base import CommandError

from analytics.conf import POLL_INTERVAL_FLOOR
from analytics.ingestion import INGESTION_LOCK_KEY, IngestionScheduler
from analytics.models import AnalyticsPipelineRun
from analytics.tasks import check_warehouse_freshness, run_analytics_ingestion


@pytest.mark.django_db
class TestRunAnalyticsIngestionTask:

    def test_idle_cycle(self):
        result = run_analytics_ingestion.delay().get()

        assert result["status"] == "idle"
        assert result["delivered"] == 0
        assert AnalyticsPipelineRun.objects.get().status == "idle"

    def test_lock_is_released(self):
        run_analytics_ingestion.delay().get()
        assert cache.get(INGESTION_LOCK_KEY) is None

    def test_skipped_while_locked(self):
        cache.add(INGESTION_LOCK_KEY, "other-worker", 60)

        result = run_analytics_ingestion.delay().get()

        assert result == {"status": "locked"}
        assert not AnalyticsPipelineRun.objects.exists()
        assert cache.get(INGESTION_LOCK_KEY) == "other-worker"

    def test_missing_endpoint_fails_run(self, make_event, settings):
        settings.ANALYTICS_PIPELINE = {"INGEST_ENDPOINT": ""}
        make_event()

        result = run_analytics_ingestion.delay(triggered_by="ops").get()

        assert result["status"] == "failed"
        assert result["failed"] == 1
        run = AnalyticsPipelineRun.objects.get()
        assert run.triggered_by == "ops"


@pytest.mark.django_db
class TestCheckWarehouseFreshnessTask:

    def test_disabled(self, settings):
        settings.ANALYTICS_FRESHNESS = None
        assert check_warehouse_freshness.delay().get() == {"status": "disabled"}

    def test_summary(self, settings):
        settings.ANALYTICS_FRESHNESS = {"backlog_threshold": 10}

        result = check_warehouse_freshness.delay().get()

        assert result["backlog"]["status"] == "ok"
        assert "bookings" in result["domains"]


@pytest.mark.django_db
class TestRunAnalyticsIngestionCommand:

    def test_single_cycle(self):
        out = StringIO()
        call_command("run_analytics_ingestion", stdout=out)

        assert "idle" in out.getvalue()
        run = AnalyticsPipelineRun.objects.get()
        assert run.triggered_by == "manual"

    def test_status(self):
        out = StringIO()
        call_command("run_analytics_ingestion", "--status", stdout=out)

        report = json.loads(out.getvalue())
        assert report["backlog"]["pendingEvents"] == 0
        assert not AnalyticsPipelineRun.objects.exists()

    def test_daemon_interval_clamped(self, monkeypatch):
        started = []
        monkeypatch.setattr(
            IngestionScheduler,
            "run_forever",
            lambda scheduler: started.append(scheduler.interval_seconds),
        )
        out = StringIO()

        call_command("run_analytics_ingestion", "--daemon", "--interval", "1", stdout=out)

        assert started == [POLL_INTERVAL_FLOOR]
        assert f"interval: {POLL_INTERVAL_FLOOR}s" in out.getvalue()

    def test_invalid_batch_size(self):
        with pytest.raises(CommandError):
            call_command("run_analytics_ingestion", "--batch-size", "0")
