# analytics/catalog.py
"""
Analytics event catalog for Fixnado.

This module defines THE CONTRACT for every analytics event the platform
captures. Each definition declares:
- The event name (used in the event_name column and the warehouse feed)
- The domain and default entity type it is reported under
- The metadata keys that MUST be present (and non-null) at capture time
- Where the tenant id and entity id come from when not passed explicitly

Naming Convention: {domain-entity}.{action}
Examples:
- zone.created
- booking.status_transition
- ads.campaign.fraud_signal

IMPORTANT: The catalog is fixed at deploy time
==============================================
There is no runtime registration API. Adding an event type means adding a
definition here and shipping it. Removing a required key is safe; adding
one breaks every caller that does not send it yet.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class EventDefinition:
    """Validation rules for one named analytics event."""

    name: str
    domain: str
    entity_type: str
    required_metadata_keys: Tuple[str, ...] = ()
    entity_id_key: Optional[str] = None
    tenant_key: Optional[str] = None
    schema_version: int = 1

    @property
    def resolved_entity_id_key(self) -> str:
        """Metadata key that supplies the entity id."""
        return self.entity_id_key or f"{self.entity_type}Id"


class EventCatalog:
    """
    Immutable lookup table of event definitions.

    Built once at process start and passed to the recorder.
    """

    def __init__(self, definitions: Iterable[EventDefinition]):
        entries: Dict[str, EventDefinition] = {}
        for definition in definitions:
            if definition.name in entries:
                raise ValueError(f"Duplicate analytics event definition '{definition.name}'")
            entries[definition.name] = definition
        self._definitions: Mapping[str, EventDefinition] = MappingProxyType(entries)

    def definition_for(self, name: str) -> Optional[EventDefinition]:
        return self._definitions.get(name)

    def names(self) -> List[str]:
        return sorted(self._definitions)

    def domains(self) -> List[str]:
        return sorted({definition.domain for definition in self._definitions.values()})

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __iter__(self) -> Iterator[EventDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)


class EventNames:
    """
    Analytics event name constants.

    Use these instead of string literals to avoid typos.
    """

    # Service zones
    ZONE_CREATED = "zone.created"
    ZONE_UPDATED = "zone.updated"
    ZONE_DELETED = "zone.deleted"
    ZONE_SERVICE_ATTACHED = "zone.service.attached"
    ZONE_SERVICE_UPDATED = "zone.service.updated"
    ZONE_SERVICE_DETACHED = "zone.service.detached"

    # Bookings
    BOOKING_CREATED = "booking.created"
    BOOKING_STATUS_TRANSITION = "booking.status_transition"
    BOOKING_ASSIGNMENT_CREATED = "booking.assignment.created"
    BOOKING_ASSIGNMENT_UPDATED = "booking.assignment.updated"
    BOOKING_ASSIGNMENT_REMOVED = "booking.assignment.removed"
    BOOKING_DISPUTE_RAISED = "booking.dispute.raised"

    # Rentals
    RENTAL_REQUESTED = "rental.requested"
    RENTAL_STATUS_TRANSITION = "rental.status_transition"
    RENTAL_INSPECTION_COMPLETED = "rental.inspection.completed"

    # Ads
    ADS_CAMPAIGN_METRICS_RECORDED = "ads.campaign.metrics_recorded"
    ADS_CAMPAIGN_FRAUD_SIGNAL = "ads.campaign.fraud_signal"

    # Communications
    COMMUNICATIONS_MESSAGE_SENT = "communications.message.sent"
    COMMUNICATIONS_DELIVERY_SUPPRESSED = "communications.delivery.suppressed"


# =============================================================================
# Definitions
# =============================================================================

_ZONE_SERVICE_KEYS = ("coverageId", "zoneId", "serviceId", "companyId")

_DEFINITIONS = (
    # Service zones
    EventDefinition(
        name=EventNames.ZONE_CREATED,
        domain="zones",
        entity_type="zone",
        required_metadata_keys=("zoneId", "companyId", "demandLevel", "areaSqMeters"),
        tenant_key="companyId",
    ),
    EventDefinition(
        name=EventNames.ZONE_UPDATED,
        domain="zones",
        entity_type="zone",
        required_metadata_keys=("zoneId", "companyId", "changes"),
        tenant_key="companyId",
    ),
    EventDefinition(
        name=EventNames.ZONE_DELETED,
        domain="zones",
        entity_type="zone",
        required_metadata_keys=("zoneId", "companyId"),
        tenant_key="companyId",
    ),
    EventDefinition(
        name=EventNames.ZONE_SERVICE_ATTACHED,
        domain="zones",
        entity_type="zone_service",
        entity_id_key="coverageId",
        required_metadata_keys=_ZONE_SERVICE_KEYS,
        tenant_key="companyId",
    ),
    EventDefinition(
        name=EventNames.ZONE_SERVICE_UPDATED,
        domain="zones",
        entity_type="zone_service",
        entity_id_key="coverageId",
        required_metadata_keys=_ZONE_SERVICE_KEYS,
        tenant_key="companyId",
    ),
    EventDefinition(
        name=EventNames.ZONE_SERVICE_DETACHED,
        domain="zones",
        entity_type="zone_service",
        entity_id_key="coverageId",
        required_metadata_keys=_ZONE_SERVICE_KEYS,
        tenant_key="companyId",
    ),

    # Bookings
    EventDefinition(
        name=EventNames.BOOKING_CREATED,
        domain="bookings",
        entity_type="booking",
        required_metadata_keys=("bookingId", "companyId", "zoneId", "type", "currency", "totalAmount"),
        tenant_key="companyId",
    ),
    EventDefinition(
        name=EventNames.BOOKING_STATUS_TRANSITION,
        domain="bookings",
        entity_type="booking",
        required_metadata_keys=("bookingId", "companyId", "fromStatus", "toStatus"),
        tenant_key="companyId",
    ),
    EventDefinition(
        name=EventNames.BOOKING_ASSIGNMENT_CREATED,
        domain="bookings",
        entity_type="booking_assignment",
        entity_id_key="assignmentId",
        required_metadata_keys=("assignmentId", "bookingId", "companyId", "providerId"),
        tenant_key="companyId",
    ),
    EventDefinition(
        name=EventNames.BOOKING_ASSIGNMENT_UPDATED,
        domain="bookings",
        entity_type="booking_assignment",
        entity_id_key="assignmentId",
        required_metadata_keys=("assignmentId", "bookingId", "companyId"),
        tenant_key="companyId",
    ),
    EventDefinition(
        name=EventNames.BOOKING_ASSIGNMENT_REMOVED,
        domain="bookings",
        entity_type="booking_assignment",
        entity_id_key="assignmentId",
        required_metadata_keys=("assignmentId", "bookingId", "companyId"),
        tenant_key="companyId",
    ),
    EventDefinition(
        name=EventNames.BOOKING_DISPUTE_RAISED,
        domain="bookings",
        entity_type="booking_dispute",
        entity_id_key="disputeId",
        required_metadata_keys=("disputeId", "bookingId", "companyId", "reason"),
        tenant_key="companyId",
    ),

    # Rentals
    EventDefinition(
        name=EventNames.RENTAL_REQUESTED,
        domain="rentals",
        entity_type="rental",
        required_metadata_keys=("rentalId", "companyId", "itemId", "quantity"),
        tenant_key="companyId",
    ),
    EventDefinition(
        name=EventNames.RENTAL_STATUS_TRANSITION,
        domain="rentals",
        entity_type="rental",
        required_metadata_keys=("rentalId", "companyId", "fromStatus", "toStatus"),
        tenant_key="companyId",
    ),
    EventDefinition(
        name=EventNames.RENTAL_INSPECTION_COMPLETED,
        domain="rentals",
        entity_type="rental",
        required_metadata_keys=("rentalId", "companyId", "outcome"),
        tenant_key="companyId",
    ),

    # Ads
    EventDefinition(
        name=EventNames.ADS_CAMPAIGN_METRICS_RECORDED,
        domain="ads",
        entity_type="campaign_metric",
        entity_id_key="metricId",
        required_metadata_keys=(
            "campaignId", "companyId", "metricDate",
            "impressions", "clicks", "conversions", "spend",
        ),
        tenant_key="companyId",
    ),
    EventDefinition(
        name=EventNames.ADS_CAMPAIGN_FRAUD_SIGNAL,
        domain="ads",
        entity_type="campaign_fraud_signal",
        entity_id_key="signalId",
        required_metadata_keys=("campaignId", "companyId", "signalType", "severity"),
        tenant_key="companyId",
    ),

    # Communications (tenant id is always passed explicitly)
    EventDefinition(
        name=EventNames.COMMUNICATIONS_MESSAGE_SENT,
        domain="communications",
        entity_type="conversation_message",
        entity_id_key="messageId",
        required_metadata_keys=("conversationId", "messageId", "messageType"),
    ),
    EventDefinition(
        name=EventNames.COMMUNICATIONS_DELIVERY_SUPPRESSED,
        domain="communications",
        entity_type="conversation_delivery",
        entity_id_key="deliveryId",
        required_metadata_keys=("conversationId", "messageId", "participantId", "reason"),
    ),
)

DEFAULT_CATALOG = EventCatalog(_DEFINITIONS)


def definition_for(name: str) -> Optional[EventDefinition]:
    """Look up a definition in the default catalog."""
    return DEFAULT_CATALOG.definition_for(name)
