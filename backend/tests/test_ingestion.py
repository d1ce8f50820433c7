# tests/test_ingestion.py
"""
Tests for the warehouse ingestion job.

Tests cover:
- Backoff on failed delivery (first and repeated failures)
- Success marking and retention
- Due-event selection
- Retention purge
- Backfill of stuck retries
- Lease claims between workers
- Attempt cap (abandon)
- Pause switch and cycle bookkeeping
"""

from datetime import timedelta

import pytest

from analytics.ingestion import (
    IngestionJob,
    compute_next_attempt_at,
    failure_patch,
    fetch_pending_analytics_events,
)
from analytics.models import AnalyticsEvent, AnalyticsPipelineControl, AnalyticsPipelineRun
from analytics.pipeline import CONTROL_KEY


@pytest.fixture
def job(pipeline_config, warehouse, clock):
    return IngestionJob(
        config=pipeline_config,
        deliver=warehouse,
        clock=clock,
        worker_id="worker-a",
    )


def _reload(events):
    return [AnalyticsEvent.objects.get(id=event.id) for event in events]


# =============================================================================
# Backoff
# =============================================================================

class TestComputeNextAttempt:

    def test_schedule_indexed_by_attempt(self, now):
        schedule = (5, 15, 60)
        assert compute_next_attempt_at(now, 1, schedule) == now + timedelta(minutes=5)
        assert compute_next_attempt_at(now, 2, schedule) == now + timedelta(minutes=15)
        assert compute_next_attempt_at(now, 3, schedule) == now + timedelta(minutes=60)

    def test_saturates_at_last_entry(self, now):
        assert compute_next_attempt_at(now, 9, (5, 15)) == now + timedelta(minutes=15)

    def test_error_message_truncated(self, now):
        event = AnalyticsEvent(ingestion_attempts=0)
        patch = failure_patch(event, "x" * 5000, now, (5,))
        assert len(patch["last_ingestion_error"]) == 2000


@pytest.mark.django_db
class TestFailedDelivery:

    def test_http_500_backs_off_whole_batch(self, job, failing_warehouse, make_event, now):
        events = [make_event(entity_id=f"b{i}") for i in range(3)]

        result = job.run_cycle()

        assert result.status == AnalyticsPipelineRun.Status.FAILED
        assert result.failed == 3
        for event in _reload(events):
            assert event.ingestion_attempts == 1
            assert event.next_ingest_attempt_at == now + timedelta(minutes=5)
            assert "500" in event.last_ingestion_error
            assert event.ingested_at is None
            assert event.lease_owner is None

    def test_second_failure_uses_next_schedule_entry(
        self, job, failing_warehouse, make_event, clock
    ):
        events = [make_event(entity_id=f"b{i}") for i in range(3)]

        job.run_cycle()
        second_now = clock.advance(minutes=5)
        job.run_cycle()

        for event in _reload(events):
            assert event.ingestion_attempts == 2
            assert event.next_ingest_attempt_at == second_now + timedelta(minutes=15)

    def test_missing_endpoint_fails_batch_without_delivery(
        self, pipeline_config, warehouse, clock, make_event, now
    ):
        job = IngestionJob(
            config=pipeline_config.with_overrides(ingest_endpoint=None),
            deliver=warehouse,
            clock=clock,
        )
        event = make_event()

        result = job.run_cycle()

        assert result.status == AnalyticsPipelineRun.Status.FAILED
        assert warehouse.batches == []
        event.refresh_from_db()
        assert event.ingestion_attempts == 1
        assert "not configured" in event.last_ingestion_error

    def test_failed_run_is_recorded(self, job, failing_warehouse, make_event):
        make_event()

        job.run_cycle(triggered_by="ops")

        run = AnalyticsPipelineRun.objects.get()
        assert run.status == AnalyticsPipelineRun.Status.FAILED
        assert run.events_failed == 1
        assert run.events_processed == 0
        assert run.triggered_by == "ops"
        assert "500" in run.last_error


# =============================================================================
# Success
# =============================================================================

@pytest.mark.django_db
class TestSuccessfulDelivery:

    def test_marks_ingested_with_retention(self, job, warehouse, make_event, now):
        events = [make_event(entity_id="b1"), make_event(entity_id="b2")]

        result = job.run_cycle()

        assert result.status == AnalyticsPipelineRun.Status.SUCCESS
        assert result.delivered == 2
        assert sorted(warehouse.delivered_ids) == sorted(e.id for e in events)
        for event in _reload(events):
            assert event.ingested_at == now
            assert event.retention_expires_at == event.occurred_at + timedelta(days=395)
            assert event.last_ingestion_error is None
            assert event.next_ingest_attempt_at is None
            assert event.ingestion_attempts == 1
            assert event.lease_owner is None

    def test_success_clears_previous_error(self, job, make_event):
        event = make_event()
        event.last_ingestion_error = "Warehouse ingest responded with 503: busy"
        event.ingestion_attempts = 2
        event.save()

        job.run_cycle()

        event.refresh_from_db()
        assert event.last_ingestion_error is None
        assert event.ingestion_attempts == 3

    def test_keep_forever_leaves_retention_empty(self, pipeline_config, warehouse, clock, make_event):
        job = IngestionJob(
            config=pipeline_config.with_overrides(retention_days=None),
            deliver=warehouse,
            clock=clock,
        )
        event = make_event()

        job.run_cycle()

        event.refresh_from_db()
        assert event.ingested_at is not None
        assert event.retention_expires_at is None

    def test_successful_run_is_recorded(self, job, make_event):
        make_event()

        job.run_cycle()

        run = AnalyticsPipelineRun.objects.get()
        assert run.status == AnalyticsPipelineRun.Status.SUCCESS
        assert run.events_processed == 1
        assert run.batches_delivered == 1
        assert run.metadata["workerId"] == "worker-a"

    def test_batch_size_bounds_delivery(self, pipeline_config, warehouse, clock, make_event, now):
        job = IngestionJob(
            config=pipeline_config.with_overrides(batch_size=2),
            deliver=warehouse,
            clock=clock,
        )
        immediate = make_event(entity_id="immediate", next_ingest_attempt_at=None)
        older = make_event(entity_id="older", next_ingest_attempt_at=now - timedelta(hours=2))
        make_event(entity_id="newer", next_ingest_attempt_at=now - timedelta(minutes=1))

        job.run_cycle()

        assert warehouse.batches == [[immediate.id, older.id]]


# =============================================================================
# Selection
# =============================================================================

@pytest.mark.django_db
class TestFetchPending:

    def test_only_due_events_returned(self, make_event, now):
        due = make_event(entity_id="due")
        unscheduled = make_event(entity_id="unscheduled", next_ingest_attempt_at=None)
        make_event(entity_id="ingested", ingested_at=now - timedelta(minutes=1))
        make_event(entity_id="future", next_ingest_attempt_at=now + timedelta(minutes=5))
        make_event(entity_id="abandoned", abandoned_at=now - timedelta(minutes=1))

        pending = fetch_pending_analytics_events(10, now=now)

        assert [e.id for e in pending] == [unscheduled.id, due.id]

    def test_never_returns_ingested_rows(self, make_event, now):
        for i in range(5):
            make_event(entity_id=f"done-{i}", ingested_at=now)

        assert fetch_pending_analytics_events(10, now=now) == []

    def test_ordered_by_next_attempt_then_occurrence(self, make_event, now):
        same_time = now - timedelta(minutes=10)
        late = make_event(entity_id="late", occurred_at=now - timedelta(hours=1), next_ingest_attempt_at=same_time)
        early = make_event(entity_id="early", occurred_at=now - timedelta(hours=3), next_ingest_attempt_at=same_time)

        pending = fetch_pending_analytics_events(10, now=now)

        assert [e.id for e in pending] == [early.id, late.id]


# =============================================================================
# Purge
# =============================================================================

@pytest.mark.django_db
class TestPurge:

    def test_purges_only_expired(self, job, make_event, now):
        expired = make_event(
            entity_id="expired",
            ingested_at=now - timedelta(days=400),
            retention_expires_at=now - timedelta(seconds=1),
        )
        kept = make_event(
            entity_id="kept",
            ingested_at=now - timedelta(days=390),
            retention_expires_at=now + timedelta(seconds=1),
        )
        pending = make_event(entity_id="pending")

        purged = job.purge_expired(now)

        assert purged == 1
        assert not AnalyticsEvent.objects.filter(id=expired.id).exists()
        assert AnalyticsEvent.objects.filter(id__in=[kept.id, pending.id]).count() == 2

    def test_purge_is_capped_oldest_first(self, pipeline_config, warehouse, clock, make_event, now):
        job = IngestionJob(
            config=pipeline_config.with_overrides(purge_batch_size=2),
            deliver=warehouse,
            clock=clock,
        )
        expiries = [now - timedelta(days=d) for d in (1, 3, 2)]
        events = [
            make_event(entity_id=f"e{i}", ingested_at=now - timedelta(days=400), retention_expires_at=at)
            for i, at in enumerate(expiries)
        ]

        assert job.purge_expired(now) == 2

        remaining = list(AnalyticsEvent.objects.values_list("id", flat=True))
        assert remaining == [events[0].id]

    def test_idle_cycle_still_purges(self, job, make_event, now):
        make_event(
            ingested_at=now - timedelta(days=400),
            retention_expires_at=now - timedelta(seconds=1),
        )

        result = job.run_cycle()

        assert result.status == AnalyticsPipelineRun.Status.IDLE
        assert result.purged == 1
        assert AnalyticsEvent.objects.count() == 0


# =============================================================================
# Backfill
# =============================================================================

@pytest.mark.django_db
class TestBackfill:

    def test_resets_recent_stuck_retries_only(self, job, make_event, now):
        future = now + timedelta(minutes=30)
        recent = make_event(entity_id="recent", occurred_at=now - timedelta(hours=1), next_ingest_attempt_at=future)
        old = make_event(entity_id="old", occurred_at=now - timedelta(hours=49), next_ingest_attempt_at=future)
        due = make_event(entity_id="due", next_ingest_attempt_at=now - timedelta(minutes=1))
        done = make_event(entity_id="done", ingested_at=now, next_ingest_attempt_at=future)

        assert job.backfill_coverage(now) == 1

        recent, old, due, done = _reload([recent, old, due, done])
        assert recent.next_ingest_attempt_at == now
        assert old.next_ingest_attempt_at == future
        assert due.next_ingest_attempt_at == now - timedelta(minutes=1)
        assert done.next_ingest_attempt_at == future

    def test_lookback_window_is_configurable(self, pipeline_config, warehouse, clock, make_event, now):
        job = IngestionJob(
            config=pipeline_config.with_overrides(lookback_hours=72),
            deliver=warehouse,
            clock=clock,
        )
        stuck = make_event(
            occurred_at=now - timedelta(hours=49),
            next_ingest_attempt_at=now + timedelta(hours=1),
        )

        assert job.backfill_coverage(now) == 1
        stuck.refresh_from_db()
        assert stuck.next_ingest_attempt_at == now

    def test_backfilled_events_are_delivered_in_same_cycle(self, job, warehouse, make_event, now):
        stuck = make_event(next_ingest_attempt_at=now + timedelta(hours=2))

        result = job.run_cycle()

        assert result.backfilled == 1
        assert warehouse.delivered_ids == [stuck.id]


# =============================================================================
# Leases
# =============================================================================

@pytest.mark.django_db
class TestLeases:

    def test_claimed_rows_are_invisible_to_other_workers(
        self, pipeline_config, warehouse, clock, make_event, now
    ):
        worker_a = IngestionJob(config=pipeline_config, deliver=warehouse, clock=clock, worker_id="a")
        worker_b = IngestionJob(config=pipeline_config, deliver=warehouse, clock=clock, worker_id="b")
        events = [make_event(entity_id=f"b{i}") for i in range(3)]

        claimed = worker_a.claim_batch(now)

        assert {e.id for e in claimed} == {e.id for e in events}
        assert all(e.lease_owner == "a" for e in claimed)
        assert worker_b.claim_batch(now) == []
        assert worker_b.fetch_pending_events(now) == []

    def test_expired_lease_can_be_reclaimed(
        self, pipeline_config, warehouse, clock, make_event, now
    ):
        worker_a = IngestionJob(config=pipeline_config, deliver=warehouse, clock=clock, worker_id="a")
        worker_b = IngestionJob(config=pipeline_config, deliver=warehouse, clock=clock, worker_id="b")
        make_event()

        worker_a.claim_batch(now)
        later = now + timedelta(seconds=pipeline_config.lease_seconds + 1)

        reclaimed = worker_b.claim_batch(later)

        assert len(reclaimed) == 1
        assert reclaimed[0].lease_owner == "b"

    def test_crashed_cycle_leaves_rows_leased(self, job, warehouse, make_event, now):
        event = make_event()
        warehouse.fail_with(RuntimeError("worker died mid-flight"))

        result = job.run_cycle()

        assert result.status == AnalyticsPipelineRun.Status.FAILED
        assert "worker died" in result.error
        event.refresh_from_db()
        assert event.ingestion_attempts == 0
        assert event.lease_owner == "worker-a"
        assert event.lease_expires_at == now + timedelta(seconds=300)


# =============================================================================
# Attempt cap
# =============================================================================

@pytest.mark.django_db
class TestAttemptCap:

    def test_unbounded_by_default(self, job, failing_warehouse, make_event, clock):
        event = make_event()

        for _ in range(7):
            job.run_cycle()
            clock.advance(days=1)

        event.refresh_from_db()
        assert event.ingestion_attempts == 7
        assert event.abandoned_at is None

    def test_cap_abandons_event(self, pipeline_config, failing_warehouse, clock, make_event, now):
        job = IngestionJob(
            config=pipeline_config.with_overrides(max_attempts=2),
            deliver=failing_warehouse,
            clock=clock,
        )
        event = make_event()

        job.run_cycle()
        clock.advance(minutes=5)
        result = job.run_cycle()

        assert result.abandoned == 1
        event.refresh_from_db()
        assert event.ingestion_attempts == 2
        assert event.abandoned_at == clock.now
        assert event.next_ingest_attempt_at is None
        assert fetch_pending_analytics_events(10, now=clock.advance(days=1)) == []


# =============================================================================
# Pipeline control
# =============================================================================

@pytest.mark.django_db
class TestPausedPipeline:

    def test_paused_pipeline_skips_cycle(self, job, warehouse, make_event):
        AnalyticsPipelineControl.objects.create(key=CONTROL_KEY, enabled=False, reason="warehouse migration")
        event = make_event()

        result = job.run_cycle()

        assert result.status == AnalyticsPipelineRun.Status.SKIPPED
        assert warehouse.batches == []
        event.refresh_from_db()
        assert event.ingestion_attempts == 0
        assert event.lease_owner is None
        run = AnalyticsPipelineRun.objects.get()
        assert run.status == AnalyticsPipelineRun.Status.SKIPPED
        assert run.metadata["reason"] == "warehouse migration"

    def test_env_disabled_skips_cycle(self, pipeline_config, warehouse, clock, make_event):
        job = IngestionJob(
            config=pipeline_config.with_overrides(enabled=False),
            deliver=warehouse,
            clock=clock,
        )
        make_event()

        result = job.run_cycle()

        assert result.status == AnalyticsPipelineRun.Status.SKIPPED
        assert result.metadata["source"] == "env"
        assert warehouse.batches == []

    def test_empty_store_records_idle_run(self, job, warehouse):
        result = job.run_cycle()

        assert result.status == AnalyticsPipelineRun.Status.IDLE
        assert warehouse.batches == []
        assert AnalyticsPipelineRun.objects.get().status == AnalyticsPipelineRun.Status.IDLE
