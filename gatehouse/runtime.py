"""Gatehouse runtime entrypoint for Kubernetes deployments.

This module provides the ASGI application factory used by Granian.  It
delegates to :func:`gatehouse.api.app.create_app` for application
construction while keeping the ``gatehouse.runtime:create_app`` entrypoint
stable.

When ``GATEHOUSE_DATABASE_URL`` is set, the runtime builds the full
ingestion pipeline (session factory, Kafka producer, orchestrator,
dead-letter store and retry sweeper) and a lifespan middleware that starts
and stops it.  Otherwise it starts in health-only mode.

Configuration is driven by environment variables:

- ``GATEHOUSE_HOST``: Bind address (default ``0.0.0.0``)
- ``GATEHOUSE_PORT``: Listen port (default ``8080``)
- ``GATEHOUSE_LOG_LEVEL``: Log level (default ``INFO``)
- ``GATEHOUSE_DATABASE_URL``: Database connection URL (optional; enables
  the ingestion endpoints when set)
- ``GATEHOUSE_RETRY_SWEEP_ENABLED``: Run the outbox retry sweep in-process
  (default ``true``); disable when a Dramatiq worker sweeps instead
- ``GATEHOUSE_CREATE_TABLES``: Create missing tables at startup (default
  ``false``)

Pipeline components read their own ``GATEHOUSE_*`` variables through
:meth:`gatehouse.api.factory.PipelineSettings.from_env`.

Run the service directly with ``python -m gatehouse.runtime``.
"""

from __future__ import annotations

import os
import typing as typ

from gatehouse.api.health.resources import HealthResource, ReadyResource
from gatehouse.common.env import parse_bool

if typ.TYPE_CHECKING:
    import falcon.asgi
from gatehouse.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)

__all__ = ["HealthResource", "ReadyResource", "create_app", "main"]

logger = get_logger(__name__)

# TCP port number range limits
_MIN_PORT = 1
_MAX_PORT = 65535


def _parse_port(port_str: str) -> int:
    """Parse and validate a port number string.

    Raises
    ------
    SystemExit
        If port_str is not a valid integer in range 1-65535.

    """
    try:
        port = int(port_str)
        if not (_MIN_PORT <= port <= _MAX_PORT):
            msg = f"port {port} outside valid range {_MIN_PORT}-{_MAX_PORT}"
            raise ValueError(msg)  # noqa: TRY301 - unify conversion and range errors
    except ValueError as exc:
        # Use error() not exception() - validation failures need no traceback
        log_error(
            logger,
            "Invalid GATEHOUSE_PORT value: %r (must be %d-%d): %s",
            port_str,
            _MIN_PORT,
            _MAX_PORT,
            exc,
        )
        raise SystemExit(1) from exc
    return port


def create_app() -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    When ``GATEHOUSE_DATABASE_URL`` is set, builds the pipeline and its
    lifespan middleware so the app serves ``/v1/events`` and
    ``/v1/dead-letters``.  Otherwise only ``/health`` and ``/ready`` are
    available.

    Returns
    -------
    falcon.asgi.App
        Configured Falcon ASGI application.

    """
    from gatehouse.api.app import create_app as _create_api_app

    database_url = os.environ.get("GATEHOUSE_DATABASE_URL")

    if database_url is None:
        return _create_api_app()

    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from gatehouse.api.app import AppDependencies
    from gatehouse.api.factory import PipelineSettings, build_pipeline
    from gatehouse.api.lifecycle import PipelineLifecycle
    from gatehouse.dedup import RedisDedupCache
    from gatehouse.outbox import KafkaBroker

    settings = PipelineSettings.from_env()
    engine = create_async_engine(database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    broker = KafkaBroker(settings.kafka)
    pipeline = build_pipeline(session_factory, broker, settings=settings)

    sweep_enabled = parse_bool("GATEHOUSE_RETRY_SWEEP_ENABLED", default=True)
    if not sweep_enabled:
        log_info(logger, "In-process retry sweep disabled")
    lifecycle = PipelineLifecycle(
        engine=engine,
        broker=broker,
        sweeper=pipeline.sweeper if sweep_enabled else None,
        cache=(
            pipeline.dedup_cache
            if isinstance(pipeline.dedup_cache, RedisDedupCache)
            else None
        ),
        create_tables=parse_bool("GATEHOUSE_CREATE_TABLES", default=False),
    )

    deps = AppDependencies(
        pipeline=pipeline,
        lifecycle=lifecycle,
        readiness_probe=lambda: lifecycle.started,
    )
    return _create_api_app(deps)


def main() -> None:
    """Start the Gatehouse runtime server using Granian.

    Reads ``GATEHOUSE_HOST``, ``GATEHOUSE_PORT``, and ``GATEHOUSE_LOG_LEVEL``
    from the environment and starts the ASGI server.
    """
    from granian import Granian
    from granian.constants import Interfaces

    host = os.environ.get("GATEHOUSE_HOST", "0.0.0.0")  # noqa: S104 - bind all interfaces for container
    port_str = os.environ.get("GATEHOUSE_PORT", "8080")
    port = _parse_port(port_str)
    log_level_str = os.environ.get("GATEHOUSE_LOG_LEVEL", "INFO")

    # Configure logging - validate log level and warn on invalid values
    normalized_level, invalid_level = configure_logging(log_level_str)
    if invalid_level:
        log_warning(
            logger,
            "Invalid GATEHOUSE_LOG_LEVEL %r, falling back to %s",
            log_level_str,
            normalized_level,
        )

    log_info(
        logger,
        "Starting Gatehouse runtime on %s:%d (log_level=%s)",
        host,
        port,
        normalized_level,
    )

    server = Granian(
        "gatehouse.runtime:create_app",
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        factory=True,
    )
    server.serve()


if __name__ == "__main__":
    main()
