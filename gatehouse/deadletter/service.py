"""Dead-letter capture, listing and resolution.

Example:
-------
List unresolved payload rejections, newest first::

    page = await store.list_dead_letters(
        DeadLetterListOptions(
            reason=RejectionReason.INVALID_PAYLOAD,
            unresolved_only=True,
            limit=20,
        )
    )

"""

from __future__ import annotations

import dataclasses as dc
import logging
import typing as typ

from sqlalchemy import Select, func, select

from gatehouse.common.time import utcnow
from gatehouse.records.storage import DeadLetterRecord

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from gatehouse.deadletter.classification import Classification
    from gatehouse.envelope.errors import EnvelopeDecodeError
    from gatehouse.envelope.models import CloudEventEnvelope
    from gatehouse.records.storage import FailureStage, RejectionReason

    type SessionFactory = async_sessionmaker[AsyncSession]

logger = logging.getLogger(__name__)


class NegativePaginationError(ValueError):
    """Raised when pagination parameters are negative."""

    def __init__(self, name: str) -> None:
        """Build a consistent error message for the invalid parameter."""
        super().__init__(f"{name} must be non-negative")


@dc.dataclass(frozen=True, slots=True)
class DeadLetterCapture:
    """Everything recorded about one rejected or undeliverable event."""

    reason: RejectionReason
    stage: FailureStage
    raw_payload: dict[str, typ.Any]
    error_details: str | None = None
    inbound_record_id: str | None = None
    external_event_id: str | None = None
    source: str | None = None
    event_type: str | None = None
    subject: str | None = None
    correlation_id: str | None = None
    facility_id: str | None = None

    @classmethod
    def for_envelope(
        cls,
        envelope: CloudEventEnvelope,
        failure: Classification,
        detail: str,
        *,
        inbound_record_id: str | None = None,
        correlation_id: str | None = None,
    ) -> DeadLetterCapture:
        """Describe a failure for an envelope that decoded successfully."""
        return cls(
            reason=failure.reason,
            stage=failure.stage,
            raw_payload=envelope.to_raw_payload(),
            error_details=detail,
            inbound_record_id=inbound_record_id,
            external_event_id=envelope.id,
            source=envelope.source,
            event_type=envelope.type,
            subject=envelope.subject,
            correlation_id=correlation_id or envelope.correlation_id,
            facility_id=envelope.facility_id,
        )

    @classmethod
    def for_undecodable(
        cls, error: EnvelopeDecodeError, failure: Classification
    ) -> DeadLetterCapture:
        """Describe a body that could not be decoded into an envelope."""
        return cls(
            reason=failure.reason,
            stage=failure.stage,
            raw_payload=error.raw_payload,
            error_details=error.detail,
            external_event_id=error.attribute("id"),
            source=error.attribute("source"),
            event_type=error.attribute("type"),
            subject=error.attribute("subject"),
            correlation_id=error.attribute("correlationid"),
            facility_id=error.attribute("facilityid"),
        )


@dc.dataclass(frozen=True, slots=True)
class DeadLetterListOptions:
    """Dead-letter listing options.

    Attributes
    ----------
    reason
        Type: ``RejectionReason | None``. Default: ``None``.

        Only return records rejected for this reason.
    source
        Type: ``str | None``. Default: ``None``.

        Only return records from this source.
    unresolved_only
        Type: ``bool``. Default: ``False``.

        When ``True``, resolved records are excluded.
    limit
        Type: ``int | None``. Default: ``None``.

        Optional maximum number of records to return.
    offset
        Type: ``int | None``. Default: ``None``.

        Optional number of ordered records to skip.

    """

    reason: RejectionReason | None = None
    source: str | None = None
    unresolved_only: bool = False
    limit: int | None = None
    offset: int | None = None


@dc.dataclass(frozen=True, slots=True)
class DeadLetterPage:
    """One page of dead letters plus the unpaginated match count."""

    items: list[DeadLetterRecord]
    total: int


def _fit(column: str, value: str | None) -> str | None:
    """Clip *value* to the width of dead-letter *column*.

    Rejections for over-long attributes must still be recordable; the full
    value survives in ``raw_payload``.
    """
    if value is None:
        return None
    length = getattr(DeadLetterRecord.__table__.c[column].type, "length", None)
    return value[:length] if length else value


def _validate_pagination(options: DeadLetterListOptions) -> None:
    if options.limit is not None and options.limit < 0:
        raise NegativePaginationError("limit")
    if options.offset is not None and options.offset < 0:
        raise NegativePaginationError("offset")


def _apply_filters(
    query: Select[typ.Any], options: DeadLetterListOptions
) -> Select[typ.Any]:
    if options.reason is not None:
        query = query.where(DeadLetterRecord.rejection_reason == options.reason)
    if options.source is not None:
        query = query.where(DeadLetterRecord.source == options.source)
    if options.unresolved_only:
        query = query.where(DeadLetterRecord.resolved.is_(False))
    return query


def _build_query(options: DeadLetterListOptions) -> Select[typ.Any]:
    """Build the filtered, newest-first, paginated listing query."""
    query = _apply_filters(select(DeadLetterRecord), options).order_by(
        DeadLetterRecord.received_at.desc(), DeadLetterRecord.id.desc()
    )
    if options.offset is not None:
        query = query.offset(options.offset)
    if options.limit is not None:
        query = query.limit(options.limit)
    return query


class DeadLetterStore:
    """Sole writer of ``DeadLetterRecord`` rows."""

    def __init__(self, session_factory: SessionFactory) -> None:
        """Store the session factory used for dead-letter access."""
        self._session_factory = session_factory

    async def capture(self, entry: DeadLetterCapture) -> DeadLetterRecord | None:
        """Append a dead letter for *entry* without ever raising.

        When *entry* names an InboundRecord, an existing dead letter with
        the same inbound record, stage and reason is returned instead of
        appending a second one.  If the write itself fails, the failure is
        logged with the full entry and ``None`` is returned.
        """
        try:
            return await self._capture(entry)
        except Exception:  # noqa: BLE001 - capture must never fail the pipeline
            logger.exception(
                "Dropping dead letter after write failure: reason=%s stage=%s "
                "event_id=%s source=%s inbound_record_id=%s details=%s",
                entry.reason,
                entry.stage,
                entry.external_event_id,
                entry.source,
                entry.inbound_record_id,
                entry.error_details,
            )
            return None

    async def _capture(self, entry: DeadLetterCapture) -> DeadLetterRecord:
        async with self._session_factory() as session, session.begin():
            if entry.inbound_record_id is not None:
                existing = await session.scalar(
                    select(DeadLetterRecord).where(
                        DeadLetterRecord.inbound_record_id == entry.inbound_record_id,
                        DeadLetterRecord.failure_stage == entry.stage,
                        DeadLetterRecord.rejection_reason == entry.reason,
                    )
                )
                if existing is not None:
                    return existing

            record = DeadLetterRecord(
                inbound_record_id=entry.inbound_record_id,
                external_event_id=_fit("external_event_id", entry.external_event_id),
                source=_fit("source", entry.source),
                event_type=_fit("event_type", entry.event_type),
                subject=_fit("subject", entry.subject),
                raw_payload=entry.raw_payload,
                rejection_reason=entry.reason,
                failure_stage=entry.stage,
                error_details=entry.error_details,
                correlation_id=_fit("correlation_id", entry.correlation_id),
                facility_id=_fit("facility_id", entry.facility_id),
                received_at=utcnow(),
                retry_count=0,
                resolved=False,
            )
            session.add(record)

        logger.warning(
            "Dead-lettered event %s from %s: reason=%s stage=%s",
            entry.external_event_id,
            entry.source,
            entry.reason,
            entry.stage,
        )
        return record

    async def get(self, dead_letter_id: str) -> DeadLetterRecord | None:
        """Return the dead letter with *dead_letter_id*, if present."""
        async with self._session_factory() as session:
            return await session.get(DeadLetterRecord, dead_letter_id)

    async def list_dead_letters(self, options: DeadLetterListOptions) -> DeadLetterPage:
        """Return dead letters matching *options*, newest first.

        Raises
        ------
        NegativePaginationError
            If limit or offset is negative.

        """
        _validate_pagination(options)
        count_query = _apply_filters(
            select(func.count()).select_from(DeadLetterRecord), options
        )
        async with self._session_factory() as session:
            total = await session.scalar(count_query)
            items = list(await session.scalars(_build_query(options)))
        return DeadLetterPage(items=items, total=int(total or 0))

    async def resolve(self, dead_letter_id: str) -> DeadLetterRecord | None:
        """Mark a dead letter resolved; ``None`` when the id is unknown.

        Resolving is bookkeeping only: nothing is re-submitted.  Resolving
        an already-resolved record leaves its ``resolved_at`` unchanged.
        """
        async with self._session_factory() as session, session.begin():
            record = await session.get(DeadLetterRecord, dead_letter_id)
            if record is None:
                return None
            if not record.resolved:
                record.resolved = True
                record.resolved_at = utcnow()
        logger.info("Dead letter %s marked resolved", dead_letter_id)
        return record

    async def count_unresolved(self) -> int:
        """Return the number of dead letters awaiting an operator."""
        async with self._session_factory() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(DeadLetterRecord)
                .where(DeadLetterRecord.resolved.is_(False))
            )
        return int(count or 0)
