# analytics/conf.py
"""
Ingestion pipeline settings.

Values come from settings.ANALYTICS_PIPELINE (filled from environment
variables in settings.py). Every numeric setting has a floor; values
below it are clamped, never rejected, so a bad value cannot stop the
worker from starting.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Optional, Tuple
import logging
import math

from django.conf import settings


logger = logging.getLogger(__name__)

DEFAULT_RETRY_SCHEDULE_MINUTES: Tuple[int, ...] = (5, 15, 60, 240, 1440)

# Upper bound on rows reclaimed by one backfill pass
BACKFILL_SCAN_LIMIT = 500

# Shortest allowed gap between ingestion cycles, in seconds
POLL_INTERVAL_FLOOR = 15


class BatchOutcomePolicy(str, Enum):
    """How a delivery outcome maps onto the events of a batch."""

    # One delivery call; every event shares its success or failure.
    WHOLE_BATCH = "whole_batch"


def _as_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid integer setting %r, using %s", value, default)
        return default


def _clamp(value: Any, default: int, floor: int) -> int:
    return max(_as_int(value, default), floor)


def parse_retention_days(value: Any, default: float = 395, floor: int = 30) -> Optional[float]:
    """Return retention in days, or None to keep ingested events forever."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("", "none", "inf", "infinity", "forever"):
            return None
        try:
            value = float(text)
        except ValueError:
            logger.warning("Invalid retention setting %r, using %s days", value, default)
            return default
    if isinstance(value, (int, float)):
        if math.isnan(value):
            return default
        if math.isinf(value):
            return None
        return max(value, floor)
    return default


def parse_retry_schedule(value: Any) -> Tuple[int, ...]:
    """
    Parse a retry schedule (minutes).

    Accepts a comma-separated string or a sequence. The result is a
    non-empty ascending tuple of positive integers; anything else falls
    back to the default schedule.
    """
    if value is None or value == "":
        return DEFAULT_RETRY_SCHEDULE_MINUTES

    raw = value.split(",") if isinstance(value, str) else value
    try:
        entries = [int(str(item).strip()) for item in raw]
    except (TypeError, ValueError):
        logger.warning("Invalid analytics retry schedule %r, using default", value)
        return DEFAULT_RETRY_SCHEDULE_MINUTES

    if not entries or any(entry <= 0 for entry in entries):
        logger.warning("Invalid analytics retry schedule %r, using default", value)
        return DEFAULT_RETRY_SCHEDULE_MINUTES

    return tuple(sorted(entries))


@dataclass(frozen=True)
class IngestionSettings:
    ingest_endpoint: Optional[str] = None
    ingest_api_key: Optional[str] = None
    enabled: bool = True
    batch_size: int = 200
    poll_interval_seconds: int = 60
    retention_days: Optional[float] = 395
    request_timeout_ms: int = 15000
    purge_batch_size: int = 200
    retry_schedule_minutes: Tuple[int, ...] = field(default=DEFAULT_RETRY_SCHEDULE_MINUTES)
    lookback_hours: int = 48
    lease_seconds: int = 300
    max_attempts: Optional[int] = None
    control_cache_seconds: int = 30
    batch_outcome_policy: BatchOutcomePolicy = BatchOutcomePolicy.WHOLE_BATCH

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "IngestionSettings":
        """Build settings from an ANALYTICS_PIPELINE-style mapping, clamping floors."""
        max_attempts = raw.get("MAX_ATTEMPTS")
        if max_attempts in (None, ""):
            max_attempts = None
        else:
            max_attempts = _clamp(max_attempts, 1, 1)

        enabled = raw.get("ENABLED", True)
        if isinstance(enabled, str):
            enabled = enabled.strip().lower() not in ("false", "0", "no", "off")

        return cls(
            ingest_endpoint=(raw.get("INGEST_ENDPOINT") or None),
            ingest_api_key=(raw.get("INGEST_API_KEY") or None),
            enabled=bool(enabled),
            batch_size=_clamp(raw.get("BATCH_SIZE"), 200, 1),
            poll_interval_seconds=_clamp(raw.get("POLL_INTERVAL_SECONDS"), 60, POLL_INTERVAL_FLOOR),
            retention_days=parse_retention_days(raw.get("RETENTION_DAYS", 395)),
            request_timeout_ms=_clamp(raw.get("REQUEST_TIMEOUT_MS"), 15000, 1000),
            purge_batch_size=_clamp(raw.get("PURGE_BATCH_SIZE"), 200, 50),
            retry_schedule_minutes=parse_retry_schedule(raw.get("RETRY_SCHEDULE_MINUTES")),
            lookback_hours=_clamp(raw.get("LOOKBACK_HOURS"), 48, 1),
            lease_seconds=_clamp(raw.get("LEASE_SECONDS"), 300, 30),
            max_attempts=max_attempts,
            control_cache_seconds=_clamp(raw.get("CONTROL_CACHE_SECONDS"), 30, 5),
        )

    @classmethod
    def from_django(cls) -> "IngestionSettings":
        return cls.from_mapping(getattr(settings, "ANALYTICS_PIPELINE", None) or {})

    def with_overrides(self, **changes) -> "IngestionSettings":
        return replace(self, **changes)

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000.0
