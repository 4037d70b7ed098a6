"""Canonical outbound message built from an outbox record."""

from __future__ import annotations

import datetime as dt
import typing as typ

import msgspec

from gatehouse.envelope.models import (
    ACTION_ID,
    FACILITY_ID,
    PROTOCOL_DEFINITION_ID,
    PROTOCOL_INSTANCE_ID,
    SOURCE_EVENT_ID,
)
from gatehouse.envelope.validation import SUPPORTED_SPEC_VERSION

if typ.TYPE_CHECKING:
    from gatehouse.records.storage import OutboxRecord


class OutboundMessage(
    msgspec.Struct, kw_only=True, omit_defaults=True, rename="camel"
):
    """Flat JSON message consumed downstream of the ``inbound`` topic."""

    id: str
    source: str
    type: str
    spec_version: str
    subject: str
    time: str
    correlation_id: str
    data: dict[str, typ.Any]
    data_content_type: str | None = None
    source_event_id: str | None = None
    facility_id: str | None = None
    protocol_instance_id: str | None = None
    protocol_definition_id: str | None = None
    action_id: str | None = None


def _text(extensions: dict[str, typ.Any], name: str) -> str | None:
    value = extensions.get(name)
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def build_outbound_message(record: OutboxRecord) -> OutboundMessage:
    """Return the canonical message for *record*."""
    extensions = record.extensions or {}
    return OutboundMessage(
        id=record.external_event_id,
        source=record.source,
        type=record.event_type,
        spec_version=SUPPORTED_SPEC_VERSION,
        subject=record.subject,
        time=record.event_time.astimezone(dt.UTC).isoformat(),
        correlation_id=record.correlation_id,
        data=record.data,
        data_content_type=record.content_type,
        source_event_id=_text(extensions, SOURCE_EVENT_ID),
        facility_id=_text(extensions, FACILITY_ID),
        protocol_instance_id=_text(extensions, PROTOCOL_INSTANCE_ID),
        protocol_definition_id=_text(extensions, PROTOCOL_DEFINITION_ID),
        action_id=_text(extensions, ACTION_ID),
    )


def encode_message(message: OutboundMessage) -> bytes:
    """Serialise *message* as compact JSON."""
    return msgspec.json.encode(message)


def message_headers(message: OutboundMessage) -> list[tuple[str, bytes]]:
    """Return Kafka headers describing *message*."""
    return [
        ("ce_id", message.id.encode("utf-8")),
        ("ce_type", message.type.encode("utf-8")),
        ("correlation_id", message.correlation_id.encode("utf-8")),
    ]
