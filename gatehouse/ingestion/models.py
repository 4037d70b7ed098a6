"""Response models returned by the ingestion orchestrator."""

from __future__ import annotations

import datetime as dt  # noqa: TC003 - msgspec resolves field types at runtime
import enum
import typing as typ

import msgspec

INTERNAL_ERROR_REASON = "INTERNAL_ERROR"


class IngestionStatus(enum.StrEnum):
    """Per-event outcome reported to callers."""

    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


class IngestionResponse(
    msgspec.Struct, kw_only=True, omit_defaults=True, rename="camel"
):
    """Outcome of ingesting one envelope."""

    event_id: str | None
    status: IngestionStatus
    correlation_id: str | None = None
    published_topic: str | None = None
    received_at: dt.datetime | None = None
    reason: str | None = None
    details: str | None = None

    @property
    def counts_as_accepted(self) -> bool:
        """Return whether the event is durably held (new or duplicate)."""
        return self.status is not IngestionStatus.REJECTED

    def to_media(self) -> dict[str, typ.Any]:
        """Return a JSON-ready mapping of the response."""
        return msgspec.to_builtins(self)


class BatchIngestionResponse(msgspec.Struct, kw_only=True, rename="camel"):
    """Outcome of a batch request, one result per submitted envelope."""

    total: int
    accepted: int
    rejected: int
    results: list[IngestionResponse]

    @classmethod
    def from_results(cls, results: list[IngestionResponse]) -> BatchIngestionResponse:
        """Tally *results* into a batch response."""
        accepted = sum(1 for result in results if result.counts_as_accepted)
        return cls(
            total=len(results),
            accepted=accepted,
            rejected=len(results) - accepted,
            results=results,
        )

    def to_media(self) -> dict[str, typ.Any]:
        """Return a JSON-ready mapping of the response."""
        return msgspec.to_builtins(self)
