"""Persistence models for inbound audit rows, the outbox and dead letters."""

from __future__ import annotations

import datetime as dt
import enum
import typing as typ
import uuid

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine

from gatehouse.common.time import utcnow
from gatehouse.records.errors import TimezoneAwareRequiredError


class InboundStatus(enum.StrEnum):
    """Lifecycle of an InboundRecord.

    ``DUPLICATE`` is reported to callers but never written: a duplicate
    submission never produces a row of its own.
    """

    RECEIVED = "RECEIVED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    DUPLICATE = "DUPLICATE"


class PublishStatus(enum.StrEnum):
    """Broker delivery state of an OutboxRecord."""

    PENDING = "PENDING"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"


class RejectionReason(enum.StrEnum):
    """Closed set of reasons an event ends up in the dead-letter store."""

    INVALID_ENVELOPE = "INVALID_ENVELOPE"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    DUPLICATE = "DUPLICATE"
    MISSING_SUBJECT = "MISSING_SUBJECT"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    DESERIALIZATION_ERROR = "DESERIALIZATION_ERROR"
    BROKER_PUBLISH_FAILURE = "BROKER_PUBLISH_FAILURE"


class FailureStage(enum.StrEnum):
    """Pipeline stage at which an event failed."""

    VALIDATION = "VALIDATION"
    PROCESSING = "PROCESSING"
    PUBLISH = "PUBLISH"


def _enum_column(enum_cls: type[enum.StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
    )


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base declarative class for Gatehouse models."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise TimezoneAwareRequiredError.for_column()
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class InboundRecord(Base):
    """Audit row written for every envelope that passes structural checks.

    The ``(source, external_event_id)`` unique constraint is the final
    arbiter between concurrent submissions of the same event.
    """

    __tablename__ = "inbound_records"
    __table_args__ = (
        UniqueConstraint(
            "source", "external_event_id", name="uq_inbound_records_source_event"
        ),
        Index("ix_inbound_records_received_at", "received_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    external_event_id: Mapped[str] = mapped_column(String(256))
    source: Mapped[str] = mapped_column(String(255))
    event_type: Mapped[str] = mapped_column(String(255))
    subject: Mapped[str] = mapped_column(String(255))
    raw_payload: Mapped[dict[str, typ.Any]] = mapped_column(JSON)
    status: Mapped[InboundStatus] = mapped_column(
        _enum_column(InboundStatus), default=InboundStatus.RECEIVED
    )
    rejection_reason: Mapped[RejectionReason | None] = mapped_column(
        _enum_column(RejectionReason), default=None
    )
    rejection_detail: Mapped[str | None] = mapped_column(Text(), default=None)
    received_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class OutboxRecord(Base):
    """Publish intent for one accepted InboundRecord."""

    __tablename__ = "outbox_records"
    __table_args__ = (
        Index("ix_outbox_records_status_created", "publish_status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    inbound_record_id: Mapped[str] = mapped_column(
        ForeignKey("inbound_records.id", ondelete="RESTRICT"), unique=True
    )
    external_event_id: Mapped[str] = mapped_column(String(256))
    source: Mapped[str] = mapped_column(String(255))
    subject: Mapped[str] = mapped_column(String(255))
    # Canonical types carry a configurable prefix, so no fixed bound applies.
    event_type: Mapped[str] = mapped_column(Text())
    event_time: Mapped[dt.datetime] = mapped_column(UTCDateTime())
    correlation_id: Mapped[str] = mapped_column(String(128))
    content_type: Mapped[str | None] = mapped_column(String(128), default=None)
    extensions: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)
    data: Mapped[dict[str, typ.Any]] = mapped_column(JSON)
    publish_status: Mapped[PublishStatus] = mapped_column(
        _enum_column(PublishStatus), default=PublishStatus.PENDING
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text(), default=None)
    published_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    broker_topic: Mapped[str | None] = mapped_column(String(255), default=None)
    broker_partition: Mapped[int | None] = mapped_column(Integer, default=None)
    broker_offset: Mapped[int | None] = mapped_column(BigInteger, default=None)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class DeadLetterRecord(Base):
    """Event that was rejected or could not be delivered."""

    __tablename__ = "dead_letter_records"
    __table_args__ = (
        Index("ix_dead_letter_records_received_at", "received_at"),
        Index("ix_dead_letter_records_reason", "rejection_reason"),
        Index("ix_dead_letter_records_source", "source"),
        Index("ix_dead_letter_records_resolved", "resolved"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    inbound_record_id: Mapped[str | None] = mapped_column(
        ForeignKey("inbound_records.id", ondelete="SET NULL"), default=None
    )
    external_event_id: Mapped[str | None] = mapped_column(String(256), default=None)
    source: Mapped[str | None] = mapped_column(String(255), default=None)
    event_type: Mapped[str | None] = mapped_column(String(255), default=None)
    subject: Mapped[str | None] = mapped_column(String(255), default=None)
    raw_payload: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)
    rejection_reason: Mapped[RejectionReason] = mapped_column(
        _enum_column(RejectionReason)
    )
    failure_stage: Mapped[FailureStage] = mapped_column(_enum_column(FailureStage))
    error_details: Mapped[str | None] = mapped_column(Text(), default=None)
    correlation_id: Mapped[str | None] = mapped_column(String(128), default=None)
    facility_id: Mapped[str | None] = mapped_column(String(128), default=None)
    received_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    next_retry_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    resolved_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )


async def init_gatehouse_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
