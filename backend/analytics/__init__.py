# analytics/__init__.py
"""
Analytics app - event capture and warehouse ingestion for Fixnado.

This app provides:
- EventCatalog: the registered analytics events and their metadata contract
- AnalyticsEvent: append-only event records with ingestion state
- record_event / record_events: the only way events enter the store
- IngestionJob: batches, delivers, retries, backfills and purges events
- Pipeline control: pause/resume switch and the run ledger

Usage:
    from analytics.catalog import EventNames
    from analytics.recorder import record_event

    record_event(
        EventNames.BOOKING_STATUS_TRANSITION,
        actor="system",
        metadata={
            "bookingId": booking.id,
            "companyId": booking.company_id,
            "fromStatus": "pending",
            "toStatus": "scheduled",
        },
    )
"""
