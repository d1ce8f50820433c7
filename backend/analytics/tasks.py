"""
Celery tasks for the analytics pipeline.

Tasks:
- run_analytics_ingestion: One ingestion cycle (backfill, deliver, purge)
- check_warehouse_freshness: Evaluate warehouse freshness and log breaches

Both are scheduled in CELERY_BEAT_SCHEDULE (fixnado_backend/settings.py).

Usage:
    # Trigger a cycle outside the schedule
    from analytics.tasks import run_analytics_ingestion
    run_analytics_ingestion.delay(triggered_by="ops")
"""
import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def run_analytics_ingestion(self, triggered_by: str = "scheduler") -> dict:
    """
    Run one ingestion cycle.

    A cache lock keeps beat ticks from overlapping: if the previous cycle
    still holds the lock, this tick is skipped.

    Returns:
        Dict with the cycle status and counters
    """
    from analytics.ingestion import run_locked_cycle

    result = run_locked_cycle(triggered_by=triggered_by)
    if result is None:
        return {"status": "locked"}

    return {
        "status": str(result.status),
        "backfilled": result.backfilled,
        "delivered": result.delivered,
        "failed": result.failed,
        "purged": result.purged,
        "error": result.error,
    }


@shared_task(bind=True)
def check_warehouse_freshness(self) -> dict:
    """
    Evaluate warehouse freshness.

    Returns:
        Freshness summary, or {"status": "disabled"} when not configured
    """
    from analytics.freshness import evaluate_warehouse_freshness

    try:
        summary = evaluate_warehouse_freshness()
    except Exception as e:
        logger.exception(f"Warehouse freshness evaluation failed: {e}")
        return {"status": "error", "error": str(e)}

    if summary is None:
        return {"status": "disabled"}
    return summary
