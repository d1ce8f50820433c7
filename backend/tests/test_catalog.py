# tests/test_catalog.py
"""
Tests for the analytics event catalog.

Tests cover:
- Catalog contents and lookups
- Immutability of definitions and the catalog map
- Entity id key resolution
"""

import dataclasses

import pytest

from analytics.catalog import (
    DEFAULT_CATALOG,
    EventCatalog,
    EventDefinition,
    EventNames,
    definition_for,
)


class TestDefaultCatalog:

    def test_every_name_constant_is_registered(self):
        constants = [
            value for key, value in vars(EventNames).items()
            if key.isupper()
        ]
        assert len(constants) == len(DEFAULT_CATALOG) == 19
        for name in constants:
            assert name in DEFAULT_CATALOG

    def test_domains(self):
        assert DEFAULT_CATALOG.domains() == [
            "ads", "bookings", "communications", "rentals", "zones",
        ]

    def test_zone_created_contract(self):
        definition = definition_for(EventNames.ZONE_CREATED)

        assert definition.domain == "zones"
        assert definition.entity_type == "zone"
        assert definition.required_metadata_keys == (
            "zoneId", "companyId", "demandLevel", "areaSqMeters",
        )
        assert definition.tenant_key == "companyId"
        assert definition.schema_version == 1

    def test_communications_events_have_no_tenant_key(self):
        for name in (
            EventNames.COMMUNICATIONS_MESSAGE_SENT,
            EventNames.COMMUNICATIONS_DELIVERY_SUPPRESSED,
        ):
            assert definition_for(name).tenant_key is None

    def test_unknown_name_returns_none(self):
        assert definition_for("zone.exploded") is None
        assert "zone.exploded" not in DEFAULT_CATALOG


class TestEntityIdKey:

    def test_defaults_to_entity_type_id(self):
        assert definition_for(EventNames.BOOKING_CREATED).resolved_entity_id_key == "bookingId"

    def test_explicit_key_wins(self):
        definition = definition_for(EventNames.ZONE_SERVICE_ATTACHED)
        assert definition.resolved_entity_id_key == "coverageId"


class TestImmutability:

    def test_definitions_are_frozen(self):
        definition = definition_for(EventNames.ZONE_CREATED)
        with pytest.raises(dataclasses.FrozenInstanceError):
            definition.domain = "bookings"

    def test_catalog_map_is_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_CATALOG._definitions["custom.event"] = None

    def test_duplicate_names_rejected(self):
        definition = EventDefinition(name="custom.event", domain="custom", entity_type="thing")
        with pytest.raises(ValueError, match="Duplicate"):
            EventCatalog([definition, definition])

    def test_custom_catalog_is_independent(self):
        catalog = EventCatalog([
            EventDefinition(name="custom.event", domain="custom", entity_type="thing"),
        ])
        assert catalog.names() == ["custom.event"]
        assert "custom.event" not in DEFAULT_CATALOG
