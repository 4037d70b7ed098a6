"""Errors raised by the Gatehouse persistence layer."""

from __future__ import annotations


class TimezoneAwareRequiredError(ValueError):
    """Raised when a naive datetime is bound to a UTC column."""

    def __init__(self, context: str) -> None:
        """Attach a consistent message for the failing context."""
        super().__init__(f"{context} must be timezone aware")

    @classmethod
    def for_column(cls) -> TimezoneAwareRequiredError:
        """Return an error for a naive value bound to a timestamp column."""
        return cls("timestamp column values")


class InboundRecordNotFoundError(LookupError):
    """Raised when a status transition targets a missing InboundRecord."""

    def __init__(self, record_id: str) -> None:
        """Record the identifier that could not be found."""
        self.record_id = record_id
        super().__init__(f"inbound record {record_id} does not exist")
