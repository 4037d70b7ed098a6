"""Audit trail writes for inbound envelopes and their outbox rows."""

from __future__ import annotations

import logging
import typing as typ

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from gatehouse.common.time import utcnow
from gatehouse.records.errors import InboundRecordNotFoundError
from gatehouse.records.storage import (
    InboundRecord,
    InboundStatus,
    OutboxRecord,
    PublishStatus,
)

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.engine import CursorResult
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from gatehouse.envelope.models import CloudEventEnvelope
    from gatehouse.envelope.normalisation import NormalisedEvent
    from gatehouse.records.storage import RejectionReason

logger = logging.getLogger(__name__)


class InboundRecordPersistError(RuntimeError):
    """Raised when an insert conflict leaves no existing row to blame."""

    def __init__(self) -> None:
        """Include a deterministic error message for logging."""
        super().__init__("expected existing inbound_record after rollback")


class AuditStore:
    """Persist InboundRecord state and the matching OutboxRecord.

    ``record_received`` runs in its own transaction so the envelope is
    durable before any further processing.  ``accept`` flips the audit row
    to ACCEPTED and inserts the outbox row in one transaction so an
    accepted event can never lack a publish intent.

    Both status transitions only apply to a RECEIVED row.  A row left in
    RECEIVED by a request that failed part-way can therefore be settled by
    a later resubmission of the same event, and never twice.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for audit writes."""
        self._session_factory = session_factory

    async def record_received(
        self,
        envelope: CloudEventEnvelope,
        *,
        received_at: dt.datetime | None = None,
    ) -> tuple[InboundRecord, bool]:
        """Insert a RECEIVED row for *envelope*.

        Returns
        -------
        tuple[InboundRecord, bool]
            The stored row and ``True`` when it was created by this call.
            ``False`` means a row for the same ``(source, id)`` already
            existed; its status shows whether that submission finished.

        """
        record = InboundRecord(
            external_event_id=envelope.id,
            source=envelope.source,
            event_type=envelope.type,
            subject=envelope.subject,
            raw_payload=envelope.to_raw_payload(),
            status=InboundStatus.RECEIVED,
            received_at=received_at or utcnow(),
        )

        async with self._session_factory() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                existing = await self._load_existing(
                    session, record.source, record.external_event_id
                )
                if existing is None:
                    raise InboundRecordPersistError from exc
                logger.info(
                    "Insert for event %s from %s lost to an existing row",
                    envelope.id,
                    envelope.source,
                )
                return existing, False
            return record, True

    async def mark_rejected(
        self,
        record_id: str,
        reason: RejectionReason,
        detail: str | None = None,
    ) -> bool:
        """Move a RECEIVED row to REJECTED with *reason*.

        Returns
        -------
        bool
            ``False`` when the row had already left RECEIVED because a
            concurrent submission of the same event settled it first.

        Raises
        ------
        InboundRecordNotFoundError
            If no row has *record_id*.

        """
        async with self._session_factory() as session, session.begin():
            settled = await self._settle(
                session,
                record_id,
                status=InboundStatus.REJECTED,
                rejection_reason=reason,
                rejection_detail=detail,
            )
        return settled

    async def accept(
        self,
        record_id: str,
        envelope: CloudEventEnvelope,
        event: NormalisedEvent,
    ) -> OutboxRecord | None:
        """Mark the row ACCEPTED and create its PENDING outbox entry.

        The status change is conditional on the row still being RECEIVED,
        so only one of several racing submissions creates the outbox row.
        ``None`` is returned to the others.

        Raises
        ------
        InboundRecordNotFoundError
            If no row has *record_id*.

        """
        async with self._session_factory() as session, session.begin():
            if not await self._settle(
                session, record_id, status=InboundStatus.ACCEPTED
            ):
                return None
            inbound = await self._require(session, record_id)
            outbox = OutboxRecord(
                inbound_record_id=inbound.id,
                external_event_id=inbound.external_event_id,
                source=inbound.source,
                subject=inbound.subject,
                event_type=event.event_type or inbound.event_type,
                event_time=event.event_time,
                correlation_id=event.correlation_id,
                content_type=envelope.datacontenttype,
                extensions=dict(envelope.extensions),
                data=dict(envelope.data or {}),
                publish_status=PublishStatus.PENDING,
                attempts=0,
                created_at=utcnow(),
            )
            session.add(outbox)
        return outbox

    async def _settle(
        self, session: AsyncSession, record_id: str, **values: object
    ) -> bool:
        # The first statement of the transaction takes the row lock, so a
        # racing settle waits and then matches nothing.
        result = await session.execute(
            update(InboundRecord)
            .where(
                InboundRecord.id == record_id,
                InboundRecord.status == InboundStatus.RECEIVED,
            )
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if typ.cast("CursorResult[typ.Any]", result).rowcount:
            return True
        await self._require(session, record_id)
        return False

    @staticmethod
    async def _require(session: AsyncSession, record_id: str) -> InboundRecord:
        record = await session.get(InboundRecord, record_id)
        if record is None:
            raise InboundRecordNotFoundError(record_id)
        return record

    @staticmethod
    async def _load_existing(
        session: AsyncSession, source: str, external_event_id: str
    ) -> InboundRecord | None:
        stmt = select(InboundRecord).where(
            InboundRecord.source == source,
            InboundRecord.external_event_id == external_event_id,
        )
        return await session.scalar(stmt)
