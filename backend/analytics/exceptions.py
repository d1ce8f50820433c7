# analytics/exceptions.py
"""
Error taxonomy for analytics capture and warehouse ingestion.

Recorder errors (UnknownEventError, InvalidMetadataError,
MissingMetadataError, InvalidTimestampError, InvalidActorError) are caller
bugs: they are raised synchronously, never retried, and nothing is written to the store.

Ingestion errors (IngestionConfigurationError, DeliveryError) are caught by
the ingestion job and turned into a failed batch with backoff.
"""

from typing import Any, Iterable, Optional


class AnalyticsError(Exception):
    """Base class for analytics pipeline errors."""


class UnknownEventError(AnalyticsError):
    """Raised when an event name is not registered in the catalog."""

    def __init__(self, event_name: str):
        self.event_name = event_name
        super().__init__(f"Unknown analytics event '{event_name}'")


class InvalidMetadataError(AnalyticsError):
    """Raised when event metadata is not a mapping."""

    def __init__(self, event_name: str, reason: str):
        self.event_name = event_name
        self.reason = reason
        super().__init__(f"Invalid metadata for analytics event '{event_name}': {reason}")


class MissingMetadataError(AnalyticsError):
    """
    Raised when required metadata keys are absent or null.

    Lists every missing key, not just the first one found.
    """

    def __init__(self, event_name: str, missing_keys: Iterable[str]):
        self.event_name = event_name
        self.missing_keys = list(missing_keys)
        super().__init__(
            f"Analytics event '{event_name}' is missing required metadata: "
            f"{', '.join(self.missing_keys)}"
        )


class InvalidTimestampError(AnalyticsError):
    """Raised when an explicit occurred_at value cannot be parsed."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Invalid occurredAt timestamp: {value!r}")


class InvalidActorError(AnalyticsError):
    """Raised when an actor value has an unsupported type."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Unsupported actor value: {value!r}")


class IngestionConfigurationError(AnalyticsError):
    """
    Raised when the warehouse endpoint is not configured.

    Treated as a delivery failure so attempts keep advancing and the
    condition is visible through last_ingestion_error.
    """


class DeliveryError(AnalyticsError):
    """Raised when a batch could not be delivered to the warehouse."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)
