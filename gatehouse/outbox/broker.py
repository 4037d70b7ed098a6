"""Broker client protocol and the Kafka implementation.

Usage
-----
>>> broker = KafkaBroker(KafkaConfig.from_env())
>>> await broker.start()
>>> ack = await broker.send("cce.events.inbound", key="Patient/1", value=b"{}")
>>> await broker.stop()

"""

from __future__ import annotations

import asyncio
import collections.abc as cabc
import dataclasses as dc
import logging
import typing as typ

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from gatehouse.common.env import parse_int, parse_str
from gatehouse.outbox.errors import BrokerPublishError

logger = logging.getLogger(__name__)

type Headers = cabc.Sequence[tuple[str, bytes]]


@dc.dataclass(frozen=True, slots=True)
class PublishAck:
    """Delivery coordinates returned by the broker."""

    topic: str
    partition: int
    offset: int


class BrokerClient(typ.Protocol):
    """Keyed, acknowledged message delivery."""

    async def send(
        self, topic: str, *, key: str, value: bytes, headers: Headers = ()
    ) -> PublishAck:
        """Deliver *value* keyed by *key* and wait for acknowledgement.

        Implementations raise ``BrokerPublishError`` on any delivery failure.
        """
        ...


@dc.dataclass(frozen=True, slots=True)
class KafkaConfig:
    """Connection settings for the Kafka producer.

    Attributes
    ----------
    bootstrap_servers
        Comma-separated ``host:port`` list.
    client_id
        Client identifier reported to the cluster.
    request_timeout_ms
        Producer request timeout in milliseconds.

    """

    bootstrap_servers: str = "localhost:9092"
    client_id: str = "gatehouse"
    request_timeout_ms: int = 30_000

    @classmethod
    def from_env(cls) -> KafkaConfig:
        """Create configuration from ``GATEHOUSE_KAFKA_*`` variables."""
        return cls(
            bootstrap_servers=parse_str(
                "GATEHOUSE_KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"
            ),
            client_id=parse_str("GATEHOUSE_KAFKA_CLIENT_ID", "gatehouse"),
            request_timeout_ms=parse_int("GATEHOUSE_KAFKA_REQUEST_TIMEOUT_MS", 30_000),
        )


class KafkaBroker:
    """``BrokerClient`` backed by an idempotent ``AIOKafkaProducer``.

    ``acks="all"`` with idempotence enabled keeps retried sends from
    duplicating or reordering messages within a partition, so keying by
    subject preserves per-subject order.
    """

    def __init__(
        self,
        config: KafkaConfig,
        *,
        producer_factory: cabc.Callable[..., AIOKafkaProducer] = AIOKafkaProducer,
    ) -> None:
        """Store configuration; the producer is created by ``start``."""
        self._config = config
        self._producer_factory = producer_factory
        self._producer: AIOKafkaProducer | None = None
        self._enabled = False
        self._lock = asyncio.Lock()

    async def _connect(self) -> AIOKafkaProducer:
        async with self._lock:
            if self._producer is not None:
                return self._producer
            producer = self._producer_factory(
                bootstrap_servers=self._config.bootstrap_servers,
                client_id=self._config.client_id,
                acks="all",
                enable_idempotence=True,
                request_timeout_ms=self._config.request_timeout_ms,
            )
            try:
                await producer.start()
            except KafkaError as exc:
                await producer.stop()
                raise BrokerPublishError.unreachable(
                    self._config.bootstrap_servers, exc
                ) from exc
            except asyncio.CancelledError:
                # A publish timeout can cancel a lazy connect mid-start.
                await producer.stop()
                raise
            self._producer = producer
        logger.info(
            "Kafka producer started (bootstrap_servers=%s client_id=%s)",
            self._config.bootstrap_servers,
            self._config.client_id,
        )
        return producer

    @property
    def started(self) -> bool:
        """Return whether the producer is running."""
        return self._producer is not None

    async def start(self) -> None:
        """Create and start the underlying producer.

        Raises
        ------
        BrokerPublishError
            If the cluster cannot be reached. The broker stays enabled and
            the next ``send`` tries to connect again.

        """
        self._enabled = True
        await self._connect()

    async def stop(self) -> None:
        """Flush and stop the producer if it is running."""
        self._enabled = False
        async with self._lock:
            if self._producer is None:
                return
            producer, self._producer = self._producer, None
            await producer.stop()
        logger.info("Kafka producer stopped")

    async def send(
        self, topic: str, *, key: str, value: bytes, headers: Headers = ()
    ) -> PublishAck:
        """Send one message and wait for the partition leader's ack.

        A broker that was started but never connected reconnects here.
        """
        if not self._enabled:
            raise BrokerPublishError.not_started()
        producer = self._producer or await self._connect()
        try:
            metadata = await producer.send_and_wait(
                topic,
                value=value,
                key=key.encode("utf-8"),
                headers=list(headers),
            )
        except KafkaError as exc:
            raise BrokerPublishError.from_broker(exc) from exc
        return PublishAck(
            topic=metadata.topic,
            partition=metadata.partition,
            offset=metadata.offset,
        )
