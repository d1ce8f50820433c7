# analytics/pipeline.py
"""
Pipeline control and run ledger.

- evaluate_pipeline_state(): is ingestion enabled right now, and why
- pause_pipeline() / resume_pipeline(): operator switch, audited as runs
- record_pipeline_run(): append one cycle outcome to the ledger
- get_pipeline_status(): backlog + recent runs for the admin API

The pause switch lives in AnalyticsPipelineControl and is cached in the
Django cache so every cycle does not hit the database. Setting
ANALYTICS_INGEST_ENABLED=False overrides the switch entirely.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional
import logging

from django.core.cache import cache
from django.db.models import Q
from django.utils import timezone

from analytics.conf import IngestionSettings
from analytics.models import AnalyticsEvent, AnalyticsPipelineControl, AnalyticsPipelineRun


logger = logging.getLogger(__name__)

CONTROL_KEY = "analytics.pipeline.enabled"
STATE_CACHE_KEY = "analytics:pipeline:state"
RECENT_RUN_LIMIT = 20
_SUCCESSFUL_STATUSES = {AnalyticsPipelineRun.Status.SUCCESS, AnalyticsPipelineRun.Status.IDLE}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _with_evaluated_at(state: Dict[str, Any]) -> Dict[str, Any]:
    return {**state, "evaluatedAt": timezone.now().isoformat()}


def _summarise_control(control: Optional[AnalyticsPipelineControl]) -> Dict[str, Any]:
    if control is None:
        return {
            "enabled": True,
            "source": "default",
            "reason": None,
            "owner": None,
            "ticket": None,
        }
    return {
        "enabled": control.enabled,
        "source": "control",
        "reason": control.reason,
        "owner": control.owner,
        "ticket": control.ticket,
    }


def clear_pipeline_state_cache() -> None:
    cache.delete(STATE_CACHE_KEY)


def evaluate_pipeline_state(
    force_refresh: bool = False,
    config: Optional[IngestionSettings] = None,
) -> Dict[str, Any]:
    config = config or IngestionSettings.from_django()

    if not config.enabled:
        return _with_evaluated_at({
            "enabled": False,
            "source": "env",
            "reason": "ANALYTICS_INGEST_ENABLED=False",
            "owner": None,
            "ticket": None,
        })

    if not force_refresh:
        cached = cache.get(STATE_CACHE_KEY)
        if cached is not None:
            return _with_evaluated_at(cached)

    control = AnalyticsPipelineControl.objects.filter(key=CONTROL_KEY).first()
    state = _summarise_control(control)
    cache.set(STATE_CACHE_KEY, state, config.control_cache_seconds)
    return _with_evaluated_at(state)


# =============================================================================
# Run ledger
# =============================================================================

def _coerce_status(value: Any) -> str:
    if value in AnalyticsPipelineRun.Status.values:
        return value
    return AnalyticsPipelineRun.Status.SUCCESS


def _coerce_count(value: Any) -> int:
    try:
        parsed = int(value or 0)
    except (TypeError, ValueError):
        return 0
    return parsed if parsed > 0 else 0


def _coerce_metadata(metadata: Any) -> Dict[str, Any]:
    if isinstance(metadata, dict):
        return metadata
    if metadata is None:
        return {}
    return {"note": str(metadata)}


def record_pipeline_run(
    *,
    status: str = AnalyticsPipelineRun.Status.SUCCESS,
    started_at: Optional[datetime] = None,
    finished_at: Optional[datetime] = None,
    events_processed: int = 0,
    events_failed: int = 0,
    batches_delivered: int = 0,
    purged_events: int = 0,
    backfilled_events: int = 0,
    triggered_by: Optional[str] = "scheduler",
    last_error: Optional[str] = None,
    metadata: Any = None,
) -> AnalyticsPipelineRun:
    started_at = started_at or timezone.now()
    trigger = triggered_by.strip() if isinstance(triggered_by, str) else ""
    return AnalyticsPipelineRun.objects.create(
        status=_coerce_status(status),
        started_at=started_at,
        finished_at=finished_at or started_at,
        events_processed=_coerce_count(events_processed),
        events_failed=_coerce_count(events_failed),
        batches_delivered=_coerce_count(batches_delivered),
        purged_events=_coerce_count(purged_events),
        backfilled_events=_coerce_count(backfilled_events),
        triggered_by=(trigger or "scheduler")[:128],
        last_error=str(last_error) if last_error else None,
        metadata=_coerce_metadata(metadata),
    )


def format_run(run: AnalyticsPipelineRun) -> Dict[str, Any]:
    return {
        "id": run.id,
        "status": run.status,
        "startedAt": _iso(run.started_at),
        "finishedAt": _iso(run.finished_at),
        "durationMs": run.duration_ms,
        "eventsProcessed": run.events_processed,
        "eventsFailed": run.events_failed,
        "batchesDelivered": run.batches_delivered,
        "purgedEvents": run.purged_events,
        "backfilledEvents": run.backfilled_events,
        "triggeredBy": run.triggered_by,
        "lastError": run.last_error,
        "metadata": run.metadata or {},
    }


def compute_failure_streak(runs: Iterable[AnalyticsPipelineRun]) -> int:
    """Count consecutive failed runs, newest first. Skipped runs break the streak."""
    streak = 0
    for run in runs:
        if run.status != AnalyticsPipelineRun.Status.FAILED:
            break
        streak += 1
    return streak


# =============================================================================
# Control actions
# =============================================================================

def _normalise_control_input(actor: Any, reason: Any, ticket: Any) -> Dict[str, Optional[str]]:
    if not isinstance(actor, str) or not actor.strip():
        raise ValueError("actor is required for analytics pipeline control actions")
    return {
        "actor": actor.strip(),
        "reason": reason.strip() if isinstance(reason, str) and reason.strip() else None,
        "ticket": ticket.strip() if isinstance(ticket, str) and ticket.strip() else None,
    }


def _set_pipeline_enabled(
    enabled: bool,
    action: str,
    default_reason: str,
    actor: Any,
    reason: Any = None,
    ticket: Any = None,
) -> Dict[str, Any]:
    values = _normalise_control_input(actor, reason, ticket)

    control, _ = AnalyticsPipelineControl.objects.update_or_create(
        key=CONTROL_KEY,
        defaults={
            "enabled": enabled,
            "reason": values["reason"] or default_reason,
            "owner": values["actor"],
            "ticket": values["ticket"],
        },
    )

    config = IngestionSettings.from_django()
    state = _summarise_control(control)
    cache.set(STATE_CACHE_KEY, state, config.control_cache_seconds)

    now = timezone.now()
    record_pipeline_run(
        status=AnalyticsPipelineRun.Status.SKIPPED,
        started_at=now,
        finished_at=now,
        triggered_by=values["actor"],
        metadata={
            "controlAction": action,
            "reason": values["reason"],
            "ticket": values["ticket"],
        },
    )

    logger.info(
        f"Analytics pipeline {action}d by {values['actor']}",
        extra={"control_action": action, "reason": values["reason"], "ticket": values["ticket"]},
    )
    return _with_evaluated_at(state)


def pause_pipeline(actor: Any, reason: Any = None, ticket: Any = None) -> Dict[str, Any]:
    return _set_pipeline_enabled(False, "pause", "Paused via API", actor, reason, ticket)


def resume_pipeline(actor: Any, reason: Any = None, ticket: Any = None) -> Dict[str, Any]:
    return _set_pipeline_enabled(True, "resume", "Resumed via API", actor, reason, ticket)


# =============================================================================
# Status report
# =============================================================================

def get_pipeline_status() -> Dict[str, Any]:
    """
    Summarise pipeline state, backlog and recent runs.

    Returns:
        Dict with pipeline, backlog, runs, failureStreak, lastSuccessAt, lastError
    """
    pending = AnalyticsEvent.objects.filter(ingested_at__isnull=True, abandoned_at__isnull=True)

    oldest = pending.order_by("occurred_at").values_list("occurred_at", flat=True).first()
    next_retry = (
        pending.filter(~Q(next_ingest_attempt_at=None))
        .order_by("next_ingest_attempt_at")
        .values_list("next_ingest_attempt_at", flat=True)
        .first()
    )

    runs = list(AnalyticsPipelineRun.objects.order_by("-started_at", "-id")[:RECENT_RUN_LIMIT])
    last_success = next((run for run in runs if run.status in _SUCCESSFUL_STATUSES), None)
    last_failure = next(
        (run for run in runs if run.status == AnalyticsPipelineRun.Status.FAILED), None
    )

    return {
        "pipeline": evaluate_pipeline_state(),
        "backlog": {
            "pendingEvents": pending.count(),
            "oldestPendingAt": _iso(oldest),
            "nextRetryAt": _iso(next_retry),
            "abandonedEvents": AnalyticsEvent.objects.filter(abandoned_at__isnull=False).count(),
        },
        "runs": [format_run(run) for run in runs],
        "failureStreak": compute_failure_streak(runs),
        "lastSuccessAt": _iso(last_success.finished_at) if last_success else None,
        "lastError": (
            {
                "message": last_failure.last_error,
                "occurredAt": _iso(last_failure.finished_at),
            }
            if last_failure
            else None
        ),
    }
