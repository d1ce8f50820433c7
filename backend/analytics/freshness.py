# analytics/freshness.py
"""
Warehouse freshness monitor.

Checks three things against settings.ANALYTICS_FRESHNESS:
- per-domain staleness of the latest ingested event
- the pending backlog (size and age of the oldest pending event)
- pipeline health (consecutive failed runs, gap since the last run)

A breach is logged once at WARNING when it starts and once at INFO when
it clears. Alert state lives in the Django cache so it is shared by all
workers.
"""

from datetime import datetime
from typing import Any, Dict, Mapping, Optional
import logging

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from analytics.catalog import DEFAULT_CATALOG
from analytics.models import AnalyticsEvent, AnalyticsPipelineRun
from analytics.pipeline import compute_failure_streak


logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_MINUTES = 120
DEFAULT_FAILURE_STREAK_THRESHOLD = 3
ALERT_CACHE_PREFIX = "analytics:freshness:alert:"
ALERT_CACHE_TIMEOUT = 7 * 24 * 60 * 60

STATUS_OK = "ok"
STATUS_BREACH = "breach"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def minutes_between(now: datetime, then: Optional[datetime]) -> Optional[int]:
    if then is None:
        return None
    seconds = (now - then).total_seconds()
    return 0 if seconds <= 0 else round(seconds / 60)


def threshold_for(thresholds: Mapping[str, Any], domain: str) -> int:
    value = thresholds.get(domain)
    if isinstance(value, (int, float)) and value > 0:
        return value
    default = thresholds.get("default")
    if isinstance(default, (int, float)) and default > 0:
        return default
    return DEFAULT_THRESHOLD_MINUTES


def reset_alert_state(aliases=None) -> None:
    """Forget active alerts (all known aliases when none are given)."""
    if aliases is None:
        aliases = [f"analytics-freshness-{domain}" for domain in DEFAULT_CATALOG.domains()]
        aliases += ["analytics-backlog", "analytics-pipeline"]
    cache.delete_many([ALERT_CACHE_PREFIX + alias for alias in aliases])


def sync_alert_state(alias: str, breach: bool, message: str, details: Dict[str, Any]) -> None:
    key = ALERT_CACHE_PREFIX + alias
    active = cache.get(key) is True

    if breach and not active:
        logger.warning(message, extra={"alert": alias, "details": details})
        cache.set(key, True, ALERT_CACHE_TIMEOUT)
    elif not breach and active:
        logger.info(f"Resolved: {message}", extra={"alert": alias, "details": details})
        cache.delete(key)


# =============================================================================
# Checks
# =============================================================================

def _check_domains(now: datetime, thresholds: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    domains = list(DEFAULT_CATALOG.domains())
    domains += [key for key in thresholds if key != "default" and key not in domains]

    results = {}
    for domain in domains:
        ingested_at = (
            AnalyticsEvent.objects.filter(domain=domain, ingested_at__isnull=False)
            .order_by("-ingested_at")
            .values_list("ingested_at", flat=True)
            .first()
        )
        stale_minutes = minutes_between(now, ingested_at)
        threshold = threshold_for(thresholds, domain)
        breach = ingested_at is None or stale_minutes > threshold

        results[domain] = {
            "lastIngestedAt": _iso(ingested_at),
            "staleMinutes": stale_minutes,
            "thresholdMinutes": threshold,
            "status": STATUS_BREACH if breach else STATUS_OK,
        }
        sync_alert_state(
            f"analytics-freshness-{domain}",
            breach,
            f"Analytics {domain} feed is stale",
            results[domain],
        )
    return results


def _check_backlog(now: datetime, config: Mapping[str, Any]) -> Dict[str, Any]:
    pending = AnalyticsEvent.objects.filter(ingested_at__isnull=True, abandoned_at__isnull=True)
    pending_count = pending.count()
    oldest = None
    if pending_count:
        oldest = pending.order_by("occurred_at").values_list("occurred_at", flat=True).first()

    age = minutes_between(now, oldest)
    count_threshold = max(config.get("backlog_threshold") or 0, 0)
    age_threshold = max(config.get("backlog_age_minutes") or 0, 0)
    breach = pending_count > count_threshold or (age is not None and age > age_threshold)

    summary = {
        "pendingCount": pending_count,
        "thresholdCount": count_threshold,
        "oldestPendingAt": _iso(oldest),
        "oldestPendingAgeMinutes": age,
        "thresholdAgeMinutes": age_threshold,
        "status": STATUS_BREACH if breach else STATUS_OK,
    }
    sync_alert_state(
        "analytics-backlog", breach, "Analytics ingestion backlog exceeds threshold", summary
    )
    return summary


def _check_pipeline(now: datetime, config: Mapping[str, Any]) -> Dict[str, Any]:
    failure_threshold = max(
        config.get("failure_streak_threshold") or DEFAULT_FAILURE_STREAK_THRESHOLD, 1
    )
    runs = list(
        AnalyticsPipelineRun.objects.order_by("-started_at", "-id")[: max(failure_threshold, 5)]
    )
    streak = compute_failure_streak(runs)

    latest = runs[0] if runs else None
    latest_finished = (latest.finished_at or latest.started_at) if latest else None
    gap = minutes_between(now, latest_finished)
    gap_threshold = max(config.get("max_run_gap_minutes") or 0, 0)
    breach = (
        streak >= failure_threshold
        or latest is None
        or (gap is not None and gap > gap_threshold)
    )

    summary = {
        "failureStreak": streak,
        "failureThreshold": failure_threshold,
        "lastRunStatus": latest.status if latest else None,
        "lastRunFinishedAt": _iso(latest_finished),
        "lastRunTrigger": latest.triggered_by if latest else None,
        "runGapMinutes": gap,
        "runGapThresholdMinutes": gap_threshold,
        "status": STATUS_BREACH if breach else STATUS_OK,
    }
    sync_alert_state(
        "analytics-pipeline", breach, "Analytics ingestion pipeline requires attention", summary
    )
    return summary


def evaluate_warehouse_freshness(
    now: Optional[datetime] = None,
    config: Optional[Mapping[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """
    Run every freshness check once.

    Returns:
        Summary dict with timestamp, domains, backlog and pipeline sections,
        or None when monitoring is not configured.
    """
    if config is None:
        config = getattr(settings, "ANALYTICS_FRESHNESS", None)
    if not config:
        logger.info("Warehouse freshness monitoring disabled: no configuration detected")
        return None

    now = now or timezone.now()
    thresholds = config.get("dataset_threshold_minutes") or {}

    summary = {
        "timestamp": now.isoformat(),
        "domains": _check_domains(now, thresholds),
        "backlog": _check_backlog(now, config),
        "pipeline": _check_pipeline(now, config),
    }
    logger.info(
        "Warehouse freshness evaluation complete",
        extra={
            "backlog_status": summary["backlog"]["status"],
            "pipeline_status": summary["pipeline"]["status"],
        },
    )
    return summary
