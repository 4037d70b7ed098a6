"""Outbox delivery: synchronous first attempt and the scheduled retry sweep.

Usage
-----
>>> publisher = OutboxPublisher(session_factory, broker, config=OutboxConfig())
>>> ack = await publisher.publish(outbox_record)
>>> result = await publisher.retry_sweep()

"""

from __future__ import annotations

import asyncio
import collections.abc as cabc
import dataclasses as dc
import datetime as dt
import enum
import logging
import typing as typ

from sqlalchemy import func, select, update

from gatehouse.common.env import parse_int, parse_str
from gatehouse.common.time import utcnow
from gatehouse.outbox.errors import BrokerPublishError, OutboxRecordNotFoundError
from gatehouse.outbox.messages import (
    build_outbound_message,
    encode_message,
    message_headers,
)
from gatehouse.records.storage import OutboxRecord, PublishStatus

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from gatehouse.outbox.broker import BrokerClient, PublishAck

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "cce.events.inbound"
_RETRYABLE = (PublishStatus.PENDING, PublishStatus.FAILED)


class OutboxEventType(enum.StrEnum):
    """Structured log event types for outbox delivery."""

    PUBLISHED = "outbox.published"
    PUBLISH_FAILED = "outbox.publish_failed"
    SWEEP_COMPLETED = "outbox.sweep.completed"
    SWEEP_ABANDONED = "outbox.sweep.abandoned"


@dc.dataclass(frozen=True, slots=True)
class OutboxConfig:
    """Delivery and retry settings for the outbox.

    Attributes
    ----------
    topic
        Broker topic accepted events are published to.
    retry_interval
        Period of the retry sweep.  Records younger than one interval are
        left alone so the sweep never races a first attempt.
    max_retry_age
        Records older than this are no longer retried and are reported as
        abandoned for operator attention.
    publish_timeout
        Upper bound on the wait for a broker acknowledgement.
    sweep_batch_size
        Maximum number of records retried by a single sweep.

    """

    topic: str = DEFAULT_TOPIC
    retry_interval: dt.timedelta = dt.timedelta(seconds=30)
    max_retry_age: dt.timedelta = dt.timedelta(minutes=60)
    publish_timeout: dt.timedelta = dt.timedelta(seconds=10)
    sweep_batch_size: int = 500

    @classmethod
    def from_env(cls) -> OutboxConfig:
        """Create configuration from environment variables.

        Reads ``GATEHOUSE_INBOUND_TOPIC``,
        ``GATEHOUSE_OUTBOX_RETRY_INTERVAL_SECONDS``,
        ``GATEHOUSE_OUTBOX_MAX_RETRY_AGE_MINUTES``,
        ``GATEHOUSE_PUBLISH_TIMEOUT_SECONDS`` and
        ``GATEHOUSE_OUTBOX_SWEEP_BATCH_SIZE``.
        """
        return cls(
            topic=parse_str("GATEHOUSE_INBOUND_TOPIC", DEFAULT_TOPIC),
            retry_interval=dt.timedelta(
                seconds=parse_int("GATEHOUSE_OUTBOX_RETRY_INTERVAL_SECONDS", 30)
            ),
            max_retry_age=dt.timedelta(
                minutes=parse_int("GATEHOUSE_OUTBOX_MAX_RETRY_AGE_MINUTES", 60)
            ),
            publish_timeout=dt.timedelta(
                seconds=parse_int("GATEHOUSE_PUBLISH_TIMEOUT_SECONDS", 10)
            ),
            sweep_batch_size=parse_int("GATEHOUSE_OUTBOX_SWEEP_BATCH_SIZE", 500),
        )


@dc.dataclass(slots=True)
class SweepResult:
    """Counts from one retry sweep."""

    attempted: int = 0
    published: int = 0
    failed: int = 0
    abandoned: int = 0


class OutboxPublisher:
    """Publish outbox records and record their delivery outcome."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: BrokerClient,
        *,
        config: OutboxConfig | None = None,
        clock: cabc.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Store collaborators and delivery configuration."""
        self._session_factory = session_factory
        self._broker = broker
        self._config = config or OutboxConfig()
        self._clock = clock

    @property
    def topic(self) -> str:
        """Return the destination topic."""
        return self._config.topic

    @property
    def config(self) -> OutboxConfig:
        """Return the delivery configuration."""
        return self._config

    async def publish(self, record: OutboxRecord) -> PublishAck:
        """Send *record* keyed by subject and persist the outcome.

        On acknowledgement the record becomes PUBLISHED with its delivery
        coordinates.  On any broker failure, including an acknowledgement
        timeout, it becomes FAILED and the error is re-raised.

        Raises
        ------
        BrokerPublishError
            If the broker did not acknowledge the message.

        """
        message = build_outbound_message(record)
        timeout = self._config.publish_timeout.total_seconds()
        try:
            ack = await asyncio.wait_for(
                self._broker.send(
                    self._config.topic,
                    key=record.subject,
                    value=encode_message(message),
                    headers=message_headers(message),
                ),
                timeout=timeout,
            )
        except TimeoutError as exc:
            error = BrokerPublishError.timed_out(timeout)
            await self._mark_failed(record, error)
            raise error from exc
        except BrokerPublishError as exc:
            await self._mark_failed(record, exc)
            raise

        await self._mark_published(record, ack)
        logger.info(
            "[%s] outbox_id=%s event_id=%s subject=%s "
            "topic=%s partition=%d offset=%d",
            OutboxEventType.PUBLISHED,
            record.id,
            record.external_event_id,
            record.subject,
            ack.topic,
            ack.partition,
            ack.offset,
        )
        return ack

    async def retry_sweep(self, *, now: dt.datetime | None = None) -> SweepResult:
        """Retry PENDING and FAILED records older than one sweep interval.

        Records past ``max_retry_age`` are counted as abandoned and left
        untouched.  Retry failures are logged and left for the next sweep.
        """
        now = now or self._clock()
        settle_cutoff = now - self._config.retry_interval
        age_cutoff = now - self._config.max_retry_age
        result = SweepResult()

        async with self._session_factory() as session:
            result.abandoned = await self._count_abandoned(session, age_cutoff)
            candidates = list(
                await session.scalars(
                    select(OutboxRecord)
                    .where(
                        OutboxRecord.publish_status.in_(_RETRYABLE),
                        OutboxRecord.created_at < settle_cutoff,
                        OutboxRecord.created_at >= age_cutoff,
                    )
                    .order_by(OutboxRecord.created_at, OutboxRecord.id)
                    .limit(self._config.sweep_batch_size)
                )
            )

        for record in candidates:
            result.attempted += 1
            try:
                await self.publish(record)
            except BrokerPublishError as exc:
                result.failed += 1
                logger.warning(
                    "Retry failed for outbox record %s (event %s): %s",
                    record.id,
                    record.external_event_id,
                    exc,
                )
            else:
                result.published += 1

        if result.abandoned:
            logger.warning(
                "[%s] abandoned=%d max_retry_age_seconds=%d",
                OutboxEventType.SWEEP_ABANDONED,
                result.abandoned,
                int(self._config.max_retry_age.total_seconds()),
            )
        logger.info(
            "[%s] attempted=%d published=%d failed=%d abandoned=%d",
            OutboxEventType.SWEEP_COMPLETED,
            result.attempted,
            result.published,
            result.failed,
            result.abandoned,
        )
        return result

    @staticmethod
    async def _count_abandoned(session: AsyncSession, age_cutoff: dt.datetime) -> int:
        count = await session.scalar(
            select(func.count())
            .select_from(OutboxRecord)
            .where(
                OutboxRecord.publish_status.in_(_RETRYABLE),
                OutboxRecord.created_at < age_cutoff,
            )
        )
        return int(count or 0)

    async def _mark_published(self, record: OutboxRecord, ack: PublishAck) -> None:
        values = {
            "publish_status": PublishStatus.PUBLISHED,
            "published_at": self._clock(),
            "broker_topic": ack.topic,
            "broker_partition": ack.partition,
            "broker_offset": ack.offset,
            "last_error": None,
        }
        await self._update(record, values)

    async def _mark_failed(
        self, record: OutboxRecord, error: BrokerPublishError
    ) -> None:
        logger.warning(
            "[%s] outbox_id=%s event_id=%s subject=%s error=%s",
            OutboxEventType.PUBLISH_FAILED,
            record.id,
            record.external_event_id,
            record.subject,
            error,
        )
        await self._update(
            record,
            {"publish_status": PublishStatus.FAILED, "last_error": str(error)},
            unless_published=True,
        )

    async def _update(
        self,
        record: OutboxRecord,
        values: dict[str, typ.Any],
        *,
        unless_published: bool = False,
    ) -> None:
        stmt = (
            update(OutboxRecord)
            .where(OutboxRecord.id == record.id)
            .values(
                attempts=OutboxRecord.attempts + 1,
                updated_at=self._clock(),
                **values,
            )
        )
        if unless_published:
            # A concurrent delivery may already have succeeded.
            stmt = stmt.where(OutboxRecord.publish_status != PublishStatus.PUBLISHED)

        async with self._session_factory() as session, session.begin():
            outcome = await session.execute(stmt)

        if outcome.rowcount == 0:
            if unless_published:
                return
            raise OutboxRecordNotFoundError(record.id)

        record.attempts = (record.attempts or 0) + 1
        for name, value in values.items():
            setattr(record, name, value)
