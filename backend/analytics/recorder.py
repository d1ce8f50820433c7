# analytics/recorder.py
"""
Analytics event recording.

This module is the only way analytics events enter the event store.
Business workflows (zone management, bookings, rentals, ads,
communications) call record_event() after their own write succeeds.

Every event is validated against the catalog (analytics/catalog.py)
before anything is persisted:
1. The event name must be registered
2. Metadata must be a mapping
3. Every required metadata key must be present and non-null
4. An explicit occurred_at must parse

If you get a MissingMetadataError, fix the metadata being sent. The error
lists every missing key.

Usage:
    from analytics.catalog import EventNames
    from analytics.recorder import ActorDetails, record_event

    record_event(
        EventNames.ZONE_CREATED,
        actor=ActorDetails(type="user", id=str(user.id), label=user.email),
        occurred_at=zone.created_at,
        metadata={
            "zoneId": zone.id,
            "companyId": zone.company_id,
            "demandLevel": zone.demand_level,
            "areaSqMeters": area,
        },
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone as dt_timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union
import logging

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from analytics.catalog import DEFAULT_CATALOG, EventCatalog, EventDefinition
from analytics.exceptions import (
    InvalidActorError,
    InvalidMetadataError,
    InvalidTimestampError,
    MissingMetadataError,
    UnknownEventError,
)
from analytics.models import AnalyticsEvent
from analytics.store import AnalyticsEventStore


logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "api"


class _Unset:
    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


# Metadata entries holding UNSET are dropped before validation; None is kept.
UNSET = _Unset()


# =============================================================================
# Actor input
# =============================================================================

@dataclass(frozen=True)
class ActorLabel:
    """Actor known only by a display label (e.g. 'system', 'zone-sync')."""

    label: str


@dataclass(frozen=True)
class ActorDetails:
    """Structured actor reference."""

    type: Optional[str] = None
    id: Optional[str] = None
    label: Optional[str] = None


Actor = Union[ActorLabel, ActorDetails]


def coerce_actor(actor: Any) -> Optional[Actor]:
    """Accept the loose shapes callers pass and return a typed actor."""
    if actor is None or isinstance(actor, (ActorLabel, ActorDetails)):
        return actor
    if isinstance(actor, str):
        return ActorLabel(actor) if actor.strip() else None
    if isinstance(actor, Mapping):
        return ActorDetails(
            type=_optional_str(actor.get("type")),
            id=_optional_str(actor.get("id")),
            label=_optional_str(actor.get("label")),
        )
    raise InvalidActorError(actor)


def resolve_actor(
    actor: Optional[Actor],
    actor_type: Optional[str] = None,
) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Return the (type, id, label) triple stored on the event."""
    if isinstance(actor, ActorDetails):
        return (actor.type or actor_type, actor.id, actor.label)
    if isinstance(actor, ActorLabel):
        return (actor_type, None, actor.label)
    return (actor_type, None, None)


# =============================================================================
# Normalisation helpers
# =============================================================================

def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def normalize_metadata(event_name: str, metadata: Any) -> Dict[str, Any]:
    if metadata is None:
        return {}
    if not isinstance(metadata, Mapping):
        raise InvalidMetadataError(
            event_name,
            f"expected an object, got {type(metadata).__name__}",
        )
    return {key: value for key, value in metadata.items() if value is not UNSET}


def find_missing_keys(definition: EventDefinition, metadata: Mapping[str, Any]) -> List[str]:
    return [
        key for key in definition.required_metadata_keys
        if metadata.get(key) is None
    ]


def normalize_occurred_at(value: Any, captured_at: datetime) -> datetime:
    """
    Parse an occurred_at input into an aware datetime.

    Accepts datetimes (naive values are read as UTC), dates, ISO-8601
    strings and Unix timestamps in seconds.
    """
    if value is None:
        return captured_at

    parsed: Optional[datetime] = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, bool):
        raise InvalidTimestampError(value)
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value, tz=dt_timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise InvalidTimestampError(value) from exc
    elif isinstance(value, str):
        text = value.strip()
        try:
            parsed = parse_datetime(text)
            if parsed is None:
                day = parse_date(text)
                if day is not None:
                    parsed = datetime.combine(day, time.min)
        except ValueError as exc:
            raise InvalidTimestampError(value) from exc

    if parsed is None:
        raise InvalidTimestampError(value)

    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


# =============================================================================
# Recorder
# =============================================================================

class EventRecorder:
    """
    Validates analytics events against a catalog and appends them to the store.
    """

    def __init__(
        self,
        catalog: EventCatalog = DEFAULT_CATALOG,
        store: Optional[AnalyticsEventStore] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.catalog = catalog
        self.store = store or AnalyticsEventStore()
        self.clock = clock

    def definition_for(self, name: str) -> Optional[EventDefinition]:
        return self.catalog.definition_for(name)

    def record_event(
        self,
        name: str,
        *,
        occurred_at: Any = None,
        actor: Any = None,
        actor_type: Optional[str] = None,
        metadata: Any = None,
        tenant_id: Any = None,
        entity_id: Any = None,
        entity_external_id: Any = None,
        source: Optional[str] = DEFAULT_SOURCE,
        channel: Optional[str] = None,
        correlation_id: Optional[str] = None,
        next_ingest_attempt_at: Optional[datetime] = None,
    ) -> AnalyticsEvent:
        """
        Validate and persist one analytics event.

        Raises:
            UnknownEventError: name is not in the catalog
            InvalidMetadataError: metadata is not a mapping
            MissingMetadataError: required keys are absent or null
            InvalidTimestampError: occurred_at cannot be parsed
        """
        definition = self.catalog.definition_for(name)
        if definition is None:
            raise UnknownEventError(name)

        clean_metadata = normalize_metadata(name, metadata)

        missing = find_missing_keys(definition, clean_metadata)
        if missing:
            raise MissingMetadataError(name, missing)

        captured_at = self.clock()
        occurred = normalize_occurred_at(occurred_at, captured_at)

        resolved_type, resolved_id, resolved_label = resolve_actor(
            coerce_actor(actor), actor_type
        )

        if tenant_id is None and definition.tenant_key:
            tenant_id = clean_metadata.get(definition.tenant_key)

        if entity_id is None:
            entity_id = clean_metadata.get(definition.resolved_entity_id_key)

        event = self.store.create(
            event_name=definition.name,
            domain=definition.domain,
            schema_version=definition.schema_version,
            entity_type=definition.entity_type,
            entity_id=_optional_str(entity_id),
            entity_external_id=_optional_str(entity_external_id),
            actor_type=resolved_type,
            actor_id=_optional_str(resolved_id),
            actor_label=resolved_label,
            tenant_id=_optional_str(tenant_id),
            source=source or DEFAULT_SOURCE,
            channel=channel,
            correlation_id=correlation_id,
            occurred_at=occurred,
            metadata=clean_metadata,
            ingested_at=None,
            ingestion_attempts=0,
            last_ingestion_error=None,
            next_ingest_attempt_at=next_ingest_attempt_at or captured_at,
            retention_expires_at=None,
        )

        logger.debug(
            "Recorded analytics event",
            extra={"event_name": name, "analytics_event_id": str(event.id)},
        )
        return event

    def record_events(self, inputs: Iterable[Mapping[str, Any]]) -> List[AnalyticsEvent]:
        """
        Record each input in order.

        Not atomic: when the Nth input fails, the first N-1 records stay
        persisted. Wrap the call in transaction.atomic() for all-or-nothing.
        """
        recorded = []
        for item in inputs:
            params = dict(item)
            name = params.pop("name")
            recorded.append(self.record_event(name, **params))
        return recorded


_default_recorder = EventRecorder()


def record_event(name: str, **kwargs) -> AnalyticsEvent:
    """Record an event with the default catalog and store."""
    return _default_recorder.record_event(name, **kwargs)


def record_events(inputs: Iterable[Mapping[str, Any]]) -> List[AnalyticsEvent]:
    """Record a list of events with the default catalog and store."""
    return _default_recorder.record_events(inputs)


def definition_for(name: str) -> Optional[EventDefinition]:
    """Catalog passthrough for callers that pre-validate."""
    return _default_recorder.definition_for(name)
