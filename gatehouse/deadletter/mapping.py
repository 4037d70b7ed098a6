"""Serialisable views of dead-letter records."""

from __future__ import annotations

import datetime as dt  # noqa: TC003 - msgspec resolves field types at runtime
import typing as typ

import msgspec

if typ.TYPE_CHECKING:
    from gatehouse.records.storage import DeadLetterRecord


class DeadLetterView(msgspec.Struct, kw_only=True, rename="camel"):
    """Operator-facing representation of a dead letter."""

    id: str
    inbound_event_id: str | None
    cloudevents_id: str | None
    source: str | None
    type: str | None
    subject: str | None
    raw_payload: dict[str, typ.Any]
    rejection_reason: str
    failure_stage: str
    error_details: str | None
    correlation_id: str | None
    facility_id: str | None
    received_at: dt.datetime
    retry_count: int
    next_retry_at: dt.datetime | None
    resolved: bool
    resolved_at: dt.datetime | None


def to_dead_letter_view(record: DeadLetterRecord) -> DeadLetterView:
    """Build a ``DeadLetterView`` from a stored record."""
    return DeadLetterView(
        id=record.id,
        inbound_event_id=record.inbound_record_id,
        cloudevents_id=record.external_event_id,
        source=record.source,
        type=record.event_type,
        subject=record.subject,
        raw_payload=record.raw_payload,
        rejection_reason=str(record.rejection_reason),
        failure_stage=str(record.failure_stage),
        error_details=record.error_details,
        correlation_id=record.correlation_id,
        facility_id=record.facility_id,
        received_at=record.received_at,
        retry_count=record.retry_count,
        next_retry_at=record.next_retry_at,
        resolved=record.resolved,
        resolved_at=record.resolved_at,
    )
