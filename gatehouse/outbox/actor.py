"""Dramatiq actor running the outbox retry sweep on a worker.

Deployments that prefer a worker fleet over the in-process
``RetrySweeper`` schedule this actor instead:

>>> sweep_outbox_job.send(database_url="postgresql+asyncpg://...")

"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import threading
import typing as typ

import dramatiq
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from gatehouse.outbox._broker import ensure_broker_configured
from gatehouse.outbox.broker import KafkaBroker, KafkaConfig
from gatehouse.outbox.publisher import OutboxConfig, OutboxPublisher

if typ.TYPE_CHECKING:
    from gatehouse.outbox.broker import BrokerClient
    from gatehouse.outbox.publisher import SweepResult

type SessionFactory = async_sessionmaker[AsyncSession]

_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, SessionFactory] = {}
_CACHE_LOCK = threading.Lock()


def _get_or_create_session_factory(database_url: str) -> SessionFactory:
    """Return a cached session factory for *database_url*.

    Thread-safe: Dramatiq runs actors on several worker threads.
    """
    with _CACHE_LOCK:
        if database_url not in _SESSION_FACTORY_CACHE:
            if database_url not in _ENGINE_CACHE:
                _ENGINE_CACHE[database_url] = create_async_engine(database_url)
            engine = _ENGINE_CACHE[database_url]
            _SESSION_FACTORY_CACHE[database_url] = async_sessionmaker(
                engine, expire_on_commit=False
            )
        return _SESSION_FACTORY_CACHE[database_url]


async def _sweep_async(
    session_factory: SessionFactory,
    broker: BrokerClient,
    config: OutboxConfig,
) -> SweepResult:
    publisher = OutboxPublisher(session_factory, broker, config=config)
    return await publisher.retry_sweep()


async def _sweep_with_kafka(session_factory: SessionFactory) -> SweepResult:
    broker = KafkaBroker(KafkaConfig.from_env())
    await broker.start()
    try:
        return await _sweep_async(session_factory, broker, OutboxConfig.from_env())
    finally:
        await broker.stop()


@dramatiq.actor(max_retries=0)
def sweep_outbox_job(database_url: str) -> dict[str, int]:
    """Run one outbox retry sweep and return its counts.

    Retries are disabled: the next scheduled sweep picks up anything this
    one could not deliver.
    """
    ensure_broker_configured()
    session_factory = _get_or_create_session_factory(database_url)
    result = asyncio.run(_sweep_with_kafka(session_factory))
    return dc.asdict(result)
