# analytics/ingestion.py
"""
Analytics warehouse ingestion job.

Each cycle:
1. Backfill: pull recent events stuck behind a future retry back to "now"
2. Fetch + claim a bounded batch of due events (lease prevents overlap)
3. Deliver the batch in one request (or fail it when no endpoint is set)
4. Mark every event succeeded or failed (whole-batch outcome)
5. Purge events whose retention window has passed
6. Record the cycle in the pipeline run ledger

A cycle never raises: unexpected errors are logged and recorded as a
failed run, so the scheduler keeps firing on schedule.

Usage:
    from analytics.ingestion import IngestionJob
    result = IngestionJob().run_cycle(triggered_by="manual")

    # Long-running worker (see run_analytics_ingestion command)
    IngestionScheduler(IngestionJob()).run_forever()

    # One cycle across all workers (Celery task, admin API)
    result = run_locked_cycle(triggered_by="ops")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging
import threading
import uuid

from django.core.cache import cache
from django.db import close_old_connections, transaction
from django.db.models import F, Q
from django.utils import timezone

from analytics.conf import (
    BACKFILL_SCAN_LIMIT,
    POLL_INTERVAL_FLOOR,
    BatchOutcomePolicy,
    IngestionSettings,
)
from analytics.delivery import deliver_batch
from analytics.exceptions import DeliveryError, IngestionConfigurationError
from analytics.models import AnalyticsEvent, AnalyticsPipelineRun
from analytics.pipeline import evaluate_pipeline_state, record_pipeline_run
from analytics.store import AnalyticsEventStore


logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000
MISSING_ENDPOINT_MESSAGE = "Analytics ingest endpoint is not configured"

# Due-event ordering: next eligible time first (null = immediately), then occurrence
PENDING_ORDERING = (
    F("next_ingest_attempt_at").asc(nulls_first=True),
    F("occurred_at").asc(),
)


@dataclass
class CycleResult:
    status: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    backfilled: int = 0
    fetched: int = 0
    delivered: int = 0
    failed: int = 0
    abandoned: int = 0
    purged: int = 0
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# State transitions
# =============================================================================

def compute_next_attempt_at(
    now: datetime,
    attempt: int,
    schedule_minutes: Sequence[int],
) -> datetime:
    """
    Backoff for the given (post-increment) attempt number.

    The last schedule entry repeats once attempts run past the schedule.
    """
    index = min(max(attempt - 1, 0), len(schedule_minutes) - 1)
    return now + timedelta(minutes=schedule_minutes[index])


def success_patch(
    event: AnalyticsEvent,
    now: datetime,
    retention_days: Optional[float],
) -> Dict[str, Any]:
    retention_expires_at = None
    if retention_days is not None:
        retention_expires_at = event.occurred_at + timedelta(days=retention_days)
    return {
        "ingestion_attempts": event.ingestion_attempts + 1,
        "ingested_at": now,
        "last_ingestion_error": None,
        "next_ingest_attempt_at": None,
        "retention_expires_at": retention_expires_at,
        "lease_owner": None,
        "lease_expires_at": None,
    }


def failure_patch(
    event: AnalyticsEvent,
    message: str,
    now: datetime,
    schedule_minutes: Sequence[int],
    max_attempts: Optional[int] = None,
) -> Dict[str, Any]:
    attempt = event.ingestion_attempts + 1
    patch = {
        "ingestion_attempts": attempt,
        "last_ingestion_error": (message or "Unknown ingestion error")[:MAX_ERROR_LENGTH],
        "next_ingest_attempt_at": compute_next_attempt_at(now, attempt, schedule_minutes),
        "lease_owner": None,
        "lease_expires_at": None,
    }
    if max_attempts is not None and attempt >= max_attempts:
        patch["abandoned_at"] = now
        patch["next_ingest_attempt_at"] = None
    return patch


def _lease_free(now: datetime) -> Q:
    return Q(lease_expires_at__isnull=True) | Q(lease_expires_at__lte=now)


def pending_filter(now: datetime) -> Q:
    """Events that are due for delivery at `now`."""
    return (
        Q(ingested_at__isnull=True)
        & Q(abandoned_at__isnull=True)
        & (Q(next_ingest_attempt_at__isnull=True) | Q(next_ingest_attempt_at__lte=now))
        & _lease_free(now)
    )


def fetch_pending_analytics_events(
    limit: int,
    now: Optional[datetime] = None,
    store: Optional[AnalyticsEventStore] = None,
) -> List[AnalyticsEvent]:
    """Due events in delivery order, at most `limit`. Never returns ingested rows."""
    store = store or AnalyticsEventStore()
    return store.find_many(
        pending_filter(now or timezone.now()),
        order_by=PENDING_ORDERING,
        limit=limit,
    )


# =============================================================================
# Job
# =============================================================================

class IngestionJob:
    """
    One ingestion worker.

    All collaborators are injectable: settings, store, delivery function,
    clock and logger. worker_id doubles as the lease owner token.
    """

    def __init__(
        self,
        config: Optional[IngestionSettings] = None,
        store: Optional[AnalyticsEventStore] = None,
        *,
        deliver: Callable[..., Any] = deliver_batch,
        clock: Callable[[], datetime] = timezone.now,
        worker_id: Optional[str] = None,
        job_logger: logging.Logger = logger,
    ):
        self.config = config or IngestionSettings.from_django()
        self.store = store or AnalyticsEventStore()
        self.deliver = deliver
        self.clock = clock
        self.worker_id = worker_id or f"ingest-{uuid.uuid4().hex[:12]}"
        self.logger = job_logger

    # ─── Cycle steps ──────────────────────────────────────────────────────────

    def backfill_coverage(self, now: datetime) -> int:
        """
        Reset future retries of recent events to `now`.

        Only events that occurred inside the lookback window are reclaimed;
        older stuck events are left alone to bound the scan.
        """
        window_start = now - timedelta(hours=self.config.lookback_hours)
        stuck = (
            Q(ingested_at__isnull=True)
            & Q(abandoned_at__isnull=True)
            & Q(occurred_at__gte=window_start)
            & Q(next_ingest_attempt_at__gt=now)
            & _lease_free(now)
        )
        candidates = self.store.find_many(
            stuck, order_by=("next_ingest_attempt_at",), limit=BACKFILL_SCAN_LIMIT
        )
        if not candidates:
            return 0

        ids = [event.id for event in candidates]
        return self.store.update_where(
            Q(id__in=ids) & Q(next_ingest_attempt_at__gt=now),
            {"next_ingest_attempt_at": now},
        )

    def fetch_pending_events(self, now: datetime, limit: Optional[int] = None) -> List[AnalyticsEvent]:
        return fetch_pending_analytics_events(
            limit or self.config.batch_size, now=now, store=self.store
        )

    def claim_batch(self, now: datetime) -> List[AnalyticsEvent]:
        """
        Fetch due events and lease them to this worker.

        Rows another worker leased in the meantime are dropped from the batch.
        """
        candidates = self.fetch_pending_events(now)
        if not candidates:
            return []

        ids = [event.id for event in candidates]
        lease_expires_at = now + timedelta(seconds=self.config.lease_seconds)
        self.store.update_where(
            Q(id__in=ids) & Q(ingested_at__isnull=True) & _lease_free(now),
            {"lease_owner": self.worker_id, "lease_expires_at": lease_expires_at},
        )
        return self.store.find_many(
            Q(id__in=ids) & Q(lease_owner=self.worker_id),
            order_by=PENDING_ORDERING,
        )

    def deliver_events(self, events: List[AnalyticsEvent], now: datetime) -> None:
        """
        Deliver a claimed batch according to the outcome policy.

        Raises:
            IngestionConfigurationError: no endpoint configured
            DeliveryError: delivery failed
        """
        if not self.config.ingest_endpoint:
            raise IngestionConfigurationError(MISSING_ENDPOINT_MESSAGE)

        if self.config.batch_outcome_policy is BatchOutcomePolicy.WHOLE_BATCH:
            self.deliver(events, self.config, now=now)
            return

        raise IngestionConfigurationError(
            f"Unsupported batch outcome policy: {self.config.batch_outcome_policy}"
        )

    def mark_succeeded(self, events: List[AnalyticsEvent], now: datetime) -> None:
        with transaction.atomic():
            for event in events:
                self.store.update_fields(
                    event, success_patch(event, now, self.config.retention_days)
                )

    def mark_failed(self, events: List[AnalyticsEvent], message: str, now: datetime) -> int:
        """Apply backoff to every event; returns how many were abandoned."""
        abandoned = 0
        with transaction.atomic():
            for event in events:
                patch = failure_patch(
                    event,
                    message,
                    now,
                    self.config.retry_schedule_minutes,
                    self.config.max_attempts,
                )
                if "abandoned_at" in patch:
                    abandoned += 1
                self.store.update_fields(event, patch)
        if abandoned:
            self.logger.warning(
                f"Abandoned {abandoned} analytics events after {self.config.max_attempts} attempts",
                extra={"abandoned": abandoned, "max_attempts": self.config.max_attempts},
            )
        return abandoned

    def purge_expired(self, now: datetime) -> int:
        """Delete events past their retention window, capped per cycle."""
        return self.store.delete_where(
            Q(retention_expires_at__lte=now),
            limit=self.config.purge_batch_size,
            order_by=("retention_expires_at",),
        )

    # ─── Cycle ────────────────────────────────────────────────────────────────

    def run_cycle(self, triggered_by: str = "scheduler") -> CycleResult:
        started_at = self.clock()
        result = CycleResult(status=AnalyticsPipelineRun.Status.IDLE, started_at=started_at)

        try:
            state = evaluate_pipeline_state(config=self.config)
            if not state["enabled"]:
                result.status = AnalyticsPipelineRun.Status.SKIPPED
                result.metadata = {"reason": state.get("reason"), "source": state.get("source")}
                self.logger.info(
                    "Analytics ingestion skipped: pipeline paused",
                    extra={"reason": state.get("reason"), "source": state.get("source")},
                )
            else:
                self._run_steps(result, started_at)
        except Exception as e:
            self.logger.exception(f"Analytics ingestion cycle failed: {e}")
            result.status = AnalyticsPipelineRun.Status.FAILED
            result.error = str(e)

        result.finished_at = self.clock()
        self._record(result, triggered_by)
        return result

    def _run_steps(self, result: CycleResult, now: datetime) -> None:
        result.backfilled = self.backfill_coverage(now)

        batch = self.claim_batch(now)
        result.fetched = len(batch)

        if not batch:
            result.purged = self.purge_expired(now)
            result.status = AnalyticsPipelineRun.Status.IDLE
            return

        try:
            self.deliver_events(batch, now)
        except (IngestionConfigurationError, DeliveryError) as e:
            marked_at = self.clock()
            result.abandoned = self.mark_failed(batch, str(e), marked_at)
            result.failed = len(batch)
            result.status = AnalyticsPipelineRun.Status.FAILED
            result.error = str(e)
            self.logger.error(
                f"Analytics batch delivery failed: {e}",
                extra={"event_count": len(batch), "worker_id": self.worker_id},
            )
        else:
            marked_at = self.clock()
            self.mark_succeeded(batch, marked_at)
            result.delivered = len(batch)
            result.status = AnalyticsPipelineRun.Status.SUCCESS
            self.logger.info(
                f"Delivered {len(batch)} analytics events",
                extra={"event_count": len(batch), "worker_id": self.worker_id},
            )

        result.purged = self.purge_expired(now)

    def _record(self, result: CycleResult, triggered_by: str) -> None:
        try:
            record_pipeline_run(
                status=result.status,
                started_at=result.started_at,
                finished_at=result.finished_at,
                events_processed=result.delivered,
                events_failed=result.failed,
                batches_delivered=1 if result.delivered else 0,
                purged_events=result.purged,
                backfilled_events=result.backfilled,
                triggered_by=triggered_by,
                last_error=result.error,
                metadata={
                    **result.metadata,
                    "workerId": self.worker_id,
                    "fetched": result.fetched,
                    "abandoned": result.abandoned,
                },
            )
        except Exception as e:
            self.logger.exception(f"Failed to record analytics pipeline run: {e}")


# =============================================================================
# Cross-process serialisation
# =============================================================================

INGESTION_LOCK_KEY = "analytics:ingestion:lock"


def run_locked_cycle(
    triggered_by: str = "scheduler",
    config: Optional[IngestionSettings] = None,
) -> Optional[CycleResult]:
    """
    Run one cycle while holding the shared ingestion cache lock.

    Celery ticks and manual API runs both go through here, so cycles on
    different workers never overlap.

    Returns:
        The cycle result, or None when another cycle holds the lock
    """
    config = config or IngestionSettings.from_django()
    token = uuid.uuid4().hex
    lock_timeout = config.lease_seconds + int(config.request_timeout_seconds)

    if not cache.add(INGESTION_LOCK_KEY, token, lock_timeout):
        logger.info("Skipping analytics ingestion: previous cycle still running")
        return None

    try:
        return IngestionJob(config=config).run_cycle(triggered_by=triggered_by)
    finally:
        if cache.get(INGESTION_LOCK_KEY) == token:
            cache.delete(INGESTION_LOCK_KEY)


# =============================================================================
# Scheduler
# =============================================================================

class IngestionScheduler:
    """
    Single-threaded recurring driver for an IngestionJob.

    Runs one cycle immediately, then one every `interval_seconds`. A tick
    that arrives while a cycle is still running is skipped.
    """

    def __init__(
        self,
        job: IngestionJob,
        interval_seconds: Optional[int] = None,
        *,
        scheduler_logger: logging.Logger = logger,
    ):
        self.job = job
        self.interval_seconds = max(
            interval_seconds or job.config.poll_interval_seconds, POLL_INTERVAL_FLOOR
        )
        self.logger = scheduler_logger
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self, triggered_by: str = "scheduler") -> Optional[CycleResult]:
        if not self._cycle_lock.acquire(blocking=False):
            self.logger.warning("Skipping analytics ingestion tick: previous cycle still running")
            return None
        try:
            return self.job.run_cycle(triggered_by=triggered_by)
        except Exception as e:
            self.logger.exception(f"Analytics ingestion tick crashed: {e}")
            return None
        finally:
            self._cycle_lock.release()

    def _tick_in_loop(self) -> None:
        # Long-lived loop: drop connections the database has timed out
        close_old_connections()
        try:
            self.tick()
        finally:
            close_old_connections()

    def run_forever(self) -> None:
        self.logger.info(
            f"Analytics ingestion scheduler started (interval {self.interval_seconds}s)",
            extra={"worker_id": self.job.worker_id},
        )
        self._tick_in_loop()
        while not self._stop_event.wait(self.interval_seconds):
            self._tick_in_loop()
        self.logger.info("Analytics ingestion scheduler stopped")

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_forever,
            name="analytics-ingestion",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
