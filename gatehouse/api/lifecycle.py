"""ASGI lifespan middleware owning the pipeline's long-lived resources.

Startup brings resources up in dependency order: tables (when asked), the
broker producer, then the retry sweeper.  Shutdown runs in reverse, so an
in-flight sweep finishes before the producer it uses is stopped.  An
unreachable broker does not block startup: the service keeps accepting
events into the outbox and the broker reconnects on its next send.

Usage
-----
Register the middleware when creating the Falcon app::

    lifecycle = PipelineLifecycle(
        engine=engine, broker=broker, sweeper=pipeline.sweeper
    )
    app = falcon.asgi.App(middleware=[lifecycle])

"""

from __future__ import annotations

import typing as typ

from gatehouse.logging import get_logger, log_info, log_warning
from gatehouse.outbox.errors import BrokerPublishError
from gatehouse.records import init_gatehouse_storage

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from gatehouse.outbox import RetrySweeper

__all__ = ["ClosableCache", "ManagedBroker", "PipelineLifecycle"]

logger = get_logger(__name__)


class ManagedBroker(typ.Protocol):
    """Broker client with an explicit start/stop lifecycle."""

    async def start(self) -> None:
        """Open connections to the broker.

        Raises ``BrokerPublishError`` when the broker is unreachable; the
        client is expected to reconnect on its next send.
        """
        ...

    async def stop(self) -> None:
        """Flush pending sends and close connections."""
        ...


class ClosableCache(typ.Protocol):
    """Shared cache client holding a connection pool."""

    async def aclose(self) -> None:
        """Release pooled connections."""
        ...


class PipelineLifecycle:
    """Falcon middleware handling ASGI lifespan startup and shutdown.

    Parameters
    ----------
    engine
        Database engine; disposed on shutdown.
    broker
        Broker client started before the sweeper and stopped after it.
    sweeper
        Periodic retry sweep; omitted when sweeping runs elsewhere.
    cache
        Shared duplicate cache; closed after the broker on shutdown.
    create_tables
        Whether startup creates missing tables.

    """

    def __init__(
        self,
        *,
        engine: AsyncEngine | None = None,
        broker: ManagedBroker | None = None,
        sweeper: RetrySweeper | None = None,
        cache: ClosableCache | None = None,
        create_tables: bool = False,
    ) -> None:
        """Store the managed resources."""
        self._engine = engine
        self._broker = broker
        self._sweeper = sweeper
        self._cache = cache
        self._create_tables = create_tables
        self._started = False

    @property
    def started(self) -> bool:
        """Return whether startup has completed and shutdown has not begun."""
        return self._started

    async def process_startup(
        self, _scope: dict[str, typ.Any], _event: dict[str, typ.Any]
    ) -> None:
        """Bring up storage, the broker and the sweeper, in that order."""
        if self._create_tables and self._engine is not None:
            await init_gatehouse_storage(self._engine)
            log_info(logger, "Gatehouse tables ensured")
        if self._broker is not None:
            try:
                await self._broker.start()
            except BrokerPublishError as exc:
                log_warning(
                    logger,
                    "Broker unavailable at startup; accepted events stay in "
                    "the outbox until it connects: %s",
                    exc.detail,
                )
        if self._sweeper is not None:
            await self._sweeper.start()
        self._started = True
        log_info(logger, "Gatehouse pipeline started")

    async def process_shutdown(
        self, _scope: dict[str, typ.Any], _event: dict[str, typ.Any]
    ) -> None:
        """Stop the sweeper and the broker, then release the cache and engine."""
        self._started = False
        if self._sweeper is not None:
            await self._sweeper.stop()
        if self._broker is not None:
            await self._broker.stop()
        if self._cache is not None:
            await self._cache.aclose()
        if self._engine is not None:
            await self._engine.dispose()
        log_info(logger, "Gatehouse pipeline stopped")
