"""Unit tests for OutboxPublisher delivery and the retry sweep."""

from __future__ import annotations

import datetime as dt
import logging
import typing as typ

import pytest

from gatehouse.outbox import (
    BrokerPublishError,
    OutboxConfig,
    OutboxPublisher,
    SweepResult,
)
from gatehouse.records import PublishStatus
from tests.helpers.broker import RecordingBroker
from tests.helpers.records import load_outbox, seed_outbox

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

_NOW = dt.datetime(2024, 6, 1, 12, 0, tzinfo=dt.UTC)


@pytest.fixture
def publisher(
    session_factory: async_sessionmaker[AsyncSession], broker: RecordingBroker
) -> OutboxPublisher:
    """Return a publisher using the recording broker."""
    return OutboxPublisher(session_factory, broker, clock=lambda: _NOW)


class TestPublish:
    """Tests for the synchronous publish path."""

    @pytest.mark.asyncio
    async def test_ack_marks_record_published(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: RecordingBroker,
        publisher: OutboxPublisher,
    ) -> None:
        """Delivery coordinates are stored on acknowledgement."""
        record = await seed_outbox(session_factory, event_id="evt-1")

        ack = await publisher.publish(record)

        stored = await load_outbox(session_factory, record.id)
        assert stored.publish_status is PublishStatus.PUBLISHED
        assert stored.attempts == 1
        assert stored.published_at == _NOW
        assert (stored.broker_topic, stored.broker_partition, stored.broker_offset) == (
            ack.topic,
            ack.partition,
            ack.offset,
        )
        assert record.publish_status is PublishStatus.PUBLISHED
        assert broker.sent[0].topic == "cce.events.inbound"
        assert broker.sent[0].key == "Patient/123"
        assert ("ce_id", b"evt-1") in broker.sent[0].headers

    @pytest.mark.asyncio
    async def test_broker_error_marks_record_failed(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: RecordingBroker,
        publisher: OutboxPublisher,
    ) -> None:
        """A broker error is recorded and re-raised."""
        record = await seed_outbox(session_factory, event_id="evt-1")
        broker.fail = True

        with pytest.raises(BrokerPublishError):
            await publisher.publish(record)

        stored = await load_outbox(session_factory, record.id)
        assert stored.publish_status is PublishStatus.FAILED
        assert stored.attempts == 1
        assert stored.last_error == "broker unavailable"
        assert stored.published_at is None

    @pytest.mark.asyncio
    async def test_missing_ack_times_out(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: RecordingBroker,
    ) -> None:
        """A slow broker is treated as a failure after the timeout."""
        record = await seed_outbox(session_factory, event_id="evt-1")
        broker.delay = 1.0
        publisher = OutboxPublisher(
            session_factory,
            broker,
            config=OutboxConfig(publish_timeout=dt.timedelta(milliseconds=50)),
        )

        with pytest.raises(BrokerPublishError, match="timed out"):
            await publisher.publish(record)

        stored = await load_outbox(session_factory, record.id)
        assert stored.publish_status is PublishStatus.FAILED

    @pytest.mark.asyncio
    async def test_late_failure_never_downgrades_published(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: RecordingBroker,
        publisher: OutboxPublisher,
    ) -> None:
        """PUBLISHED is terminal even if a stale attempt fails afterwards."""
        record = await seed_outbox(session_factory, event_id="evt-1")
        stale = await load_outbox(session_factory, record.id)
        await publisher.publish(record)
        broker.fail = True

        with pytest.raises(BrokerPublishError):
            await publisher.publish(stale)

        stored = await load_outbox(session_factory, record.id)
        assert stored.publish_status is PublishStatus.PUBLISHED
        assert stored.last_error is None


class TestRetrySweep:
    """Tests for retry_sweep selection and outcomes."""

    @pytest.mark.asyncio
    async def test_sweep_selects_settled_retryable_records(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: RecordingBroker,
        publisher: OutboxPublisher,
    ) -> None:
        """Young, published and over-age records are not retried."""
        young = await seed_outbox(
            session_factory,
            event_id="young",
            created_at=_NOW - dt.timedelta(seconds=10),
        )
        pending = await seed_outbox(
            session_factory,
            event_id="pending",
            created_at=_NOW - dt.timedelta(minutes=2),
        )
        failed = await seed_outbox(
            session_factory,
            event_id="failed",
            created_at=_NOW - dt.timedelta(minutes=5),
            status=PublishStatus.FAILED,
        )
        await seed_outbox(
            session_factory,
            event_id="done",
            created_at=_NOW - dt.timedelta(minutes=5),
            status=PublishStatus.PUBLISHED,
        )
        stuck = await seed_outbox(
            session_factory,
            event_id="stuck",
            created_at=_NOW - dt.timedelta(hours=2),
        )

        result = await publisher.retry_sweep(now=_NOW)

        assert result == SweepResult(attempted=2, published=2, failed=0, abandoned=1)
        assert [message.headers[0][1] for message in broker.sent] == [
            b"failed",
            b"pending",
        ]
        for record, status in (
            (young, PublishStatus.PENDING),
            (pending, PublishStatus.PUBLISHED),
            (failed, PublishStatus.PUBLISHED),
            (stuck, PublishStatus.PENDING),
        ):
            stored = await load_outbox(session_factory, record.id)
            assert stored.publish_status is status, stored.external_event_id

    @pytest.mark.asyncio
    async def test_failed_retry_is_left_for_next_sweep(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: RecordingBroker,
        publisher: OutboxPublisher,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Retry failures are counted and logged, never raised."""
        record = await seed_outbox(
            session_factory,
            event_id="evt-1",
            created_at=_NOW - dt.timedelta(minutes=2),
        )
        broker.fail = True

        with caplog.at_level(logging.INFO, logger="gatehouse.outbox"):
            first = await publisher.retry_sweep(now=_NOW)
            second = await publisher.retry_sweep(now=_NOW)

        assert first == SweepResult(attempted=1, published=0, failed=1)
        assert second.failed == 1
        stored = await load_outbox(session_factory, record.id)
        assert stored.publish_status is PublishStatus.FAILED
        assert stored.attempts == 2
        assert "[outbox.sweep.completed] attempted=1 published=0 failed=1" in (
            caplog.text
        )

    @pytest.mark.asyncio
    async def test_abandoned_records_are_reported(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: RecordingBroker,
        publisher: OutboxPublisher,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Over-age records raise an operator-facing warning."""
        await seed_outbox(
            session_factory,
            event_id="stuck",
            created_at=_NOW - dt.timedelta(minutes=61),
        )

        with caplog.at_level(logging.WARNING, logger="gatehouse.outbox"):
            result = await publisher.retry_sweep(now=_NOW)

        assert result.abandoned == 1
        assert broker.attempts == 0
        assert "[outbox.sweep.abandoned] abandoned=1" in caplog.text

    @pytest.mark.asyncio
    async def test_sweep_respects_batch_size(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: RecordingBroker,
    ) -> None:
        """At most sweep_batch_size records are retried per sweep."""
        for index in range(3):
            await seed_outbox(
                session_factory,
                event_id=f"evt-{index}",
                created_at=_NOW - dt.timedelta(minutes=10 - index),
            )
        publisher = OutboxPublisher(
            session_factory, broker, config=OutboxConfig(sweep_batch_size=2)
        )

        result = await publisher.retry_sweep(now=_NOW)

        assert result.attempted == 2
        assert [dict(m.headers)["ce_id"] for m in broker.sent] == [b"evt-0", b"evt-1"]

    @pytest.mark.asyncio
    async def test_sweep_preserves_subject_order(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: RecordingBroker,
        publisher: OutboxPublisher,
    ) -> None:
        """Retries for one subject go out oldest first on one partition."""
        for index in range(3):
            await seed_outbox(
                session_factory,
                event_id=f"evt-{index}",
                subject="Patient/9",
                created_at=_NOW - dt.timedelta(minutes=10 - index),
            )

        await publisher.retry_sweep(now=_NOW)

        partitions = {message.partition for message in broker.sent}
        offsets = [message.offset for message in broker.sent]
        assert len(partitions) == 1
        assert offsets == sorted(offsets)
        assert [dict(m.headers)["ce_id"] for m in broker.sent] == [
            b"evt-0",
            b"evt-1",
            b"evt-2",
        ]
