"""Factory for building the ingestion pipeline from environment configuration.

This module provides ``PipelineSettings``, which gathers every component
configuration, and ``build_pipeline()``, which assembles the orchestrator,
dead-letter store and retry sweeper around one session factory and one
broker client.

Usage
-----
Build the pipeline for the API layer::

    from gatehouse.api.factory import PipelineSettings, build_pipeline

    pipeline = build_pipeline(
        session_factory, broker, settings=PipelineSettings.from_env()
    )

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from gatehouse.deadletter import DeadLetterStore
from gatehouse.dedup import (
    DedupConfig,
    Deduplicator,
    InMemoryDedupCache,
    RedisDedupCache,
)
from gatehouse.envelope import EnvelopeValidator, EventNormaliser
from gatehouse.ingestion import (
    IngestionConfig,
    IngestionDependencies,
    IngestionEventLogger,
    IngestionOrchestrator,
)
from gatehouse.outbox import KafkaConfig, OutboxConfig, OutboxPublisher, RetrySweeper
from gatehouse.payload import PayloadGateConfig, PayloadValidationGate
from gatehouse.records import AuditStore

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from gatehouse.dedup import DedupCache
    from gatehouse.outbox import BrokerClient
    from gatehouse.payload import PayloadValidator

__all__ = ["Pipeline", "PipelineSettings", "build_dedup_cache", "build_pipeline"]


@dc.dataclass(frozen=True, slots=True)
class PipelineSettings:
    """Configuration for every pipeline component.

    Attributes
    ----------
    ingestion
        Request limits and type canonicalisation.
    payload
        Payload validation gate settings.
    dedup
        Duplicate detection settings.
    outbox
        Topic, publish timeout and retry sweep settings.
    kafka
        Kafka producer connection settings.

    """

    ingestion: IngestionConfig = dc.field(default_factory=IngestionConfig)
    payload: PayloadGateConfig = dc.field(default_factory=PayloadGateConfig)
    dedup: DedupConfig = dc.field(default_factory=DedupConfig)
    outbox: OutboxConfig = dc.field(default_factory=OutboxConfig)
    kafka: KafkaConfig = dc.field(default_factory=KafkaConfig)

    @classmethod
    def from_env(cls) -> PipelineSettings:
        """Read every component configuration from ``GATEHOUSE_*`` variables.

        Raises
        ------
        ValueError
            If any variable is malformed.

        """
        return cls(
            ingestion=IngestionConfig.from_env(),
            payload=PayloadGateConfig.from_env(),
            dedup=DedupConfig.from_env(),
            outbox=OutboxConfig.from_env(),
            kafka=KafkaConfig.from_env(),
        )


@dc.dataclass(frozen=True, slots=True)
class Pipeline:
    """Long-lived pipeline services shared by the API and lifespan hooks."""

    orchestrator: IngestionOrchestrator
    dead_letters: DeadLetterStore
    publisher: OutboxPublisher
    sweeper: RetrySweeper
    dedup_cache: DedupCache | None = None


def build_dedup_cache(config: DedupConfig) -> DedupCache | None:
    """Return the fast-path cache selected by *config*.

    ``GATEHOUSE_REDIS_URL`` selects a shared ``RedisDedupCache``; without it
    each process uses an ``InMemoryDedupCache``.  ``None`` is returned when
    caching is disabled.
    """
    if not config.cache_enabled:
        return None
    if config.redis_url:
        return RedisDedupCache.from_url(config.redis_url)
    return InMemoryDedupCache()


def build_pipeline(
    session_factory: async_sessionmaker[AsyncSession],
    broker: BrokerClient,
    *,
    settings: PipelineSettings | None = None,
    dedup_cache: DedupCache | None = None,
    payload_validator: PayloadValidator | None = None,
) -> Pipeline:
    """Assemble the ingestion pipeline.

    Parameters
    ----------
    session_factory
        Async session factory for database access.
    broker
        Broker client used for first attempts and retries.
    settings
        Component configuration; defaults apply when omitted.
    dedup_cache
        Fast-path duplicate cache.  One is built from ``settings.dedup``
        by ``build_dedup_cache`` when none is supplied.
    payload_validator
        External payload validator; ``ResourceShapeValidator`` by default.

    Returns
    -------
    Pipeline
        Orchestrator, dead-letter store, publisher, sweeper and the
        duplicate cache in use.

    """
    settings = settings or PipelineSettings()
    if dedup_cache is None:
        dedup_cache = build_dedup_cache(settings.dedup)

    publisher = OutboxPublisher(session_factory, broker, config=settings.outbox)
    dead_letters = DeadLetterStore(session_factory)
    dependencies = IngestionDependencies(
        validator=EnvelopeValidator(
            max_data_bytes=settings.ingestion.max_data_bytes
        ),
        normaliser=EventNormaliser(
            type_domain=settings.ingestion.type_domain,
            canonical_prefix=settings.ingestion.canonical_type_prefix,
        ),
        payload_gate=PayloadValidationGate(
            payload_validator, config=settings.payload
        ),
        deduplicator=Deduplicator(
            session_factory, cache=dedup_cache, config=settings.dedup
        ),
        audit=AuditStore(session_factory),
        publisher=publisher,
        dead_letters=dead_letters,
    )
    orchestrator = IngestionOrchestrator(
        dependencies,
        config=settings.ingestion,
        event_logger=IngestionEventLogger(),
    )
    return Pipeline(
        orchestrator=orchestrator,
        dead_letters=dead_letters,
        publisher=publisher,
        sweeper=RetrySweeper(publisher),
        dedup_cache=dedup_cache,
    )
