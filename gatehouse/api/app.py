"""Application factory for the Gatehouse Falcon ASGI application.

This module provides ``create_app()`` which builds and configures the
Falcon ASGI application with health endpoints and, when the pipeline is
available, the ingestion and dead-letter endpoints.

Usage
-----
Create a health-only app (no database)::

    app = create_app()

Create a full app with domain endpoints::

    from gatehouse.api.app import AppDependencies, create_app

    deps = AppDependencies(pipeline=pipeline, lifecycle=lifecycle)
    app = create_app(deps)

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon.asgi

from gatehouse.api.errors import register_error_handlers
from gatehouse.api.health.resources import HealthResource, ReadyResource

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from gatehouse.api.factory import Pipeline
    from gatehouse.api.lifecycle import PipelineLifecycle

__all__ = ["AppDependencies", "create_app"]


@dc.dataclass(frozen=True, slots=True)
class AppDependencies:
    """Dependencies for the Falcon ASGI application.

    When ``pipeline`` is provided the application includes the ingestion
    and dead-letter endpoints.  Otherwise only health endpoints are
    registered.

    Attributes
    ----------
    pipeline
        Orchestrator, dead-letter store and sweeper.
    lifecycle
        Lifespan middleware that starts and stops long-lived resources.
    readiness_probe
        Callable reporting whether dependencies are up; ``/ready``
        answers 503 while it returns ``False``.

    """

    pipeline: Pipeline | None = None
    lifecycle: PipelineLifecycle | None = None
    readiness_probe: cabc.Callable[[], bool] | None = None


def create_app(
    dependencies: AppDependencies | None = None,
) -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    Parameters
    ----------
    dependencies
        Optional application dependencies.  When ``None``, only health
        endpoints are available.

    Returns
    -------
    falcon.asgi.App
        Configured Falcon ASGI application.

    """
    deps = dependencies or AppDependencies()
    middleware: list[object] = []
    if deps.lifecycle is not None:
        middleware.append(deps.lifecycle)

    app = falcon.asgi.App(middleware=middleware)  # type: ignore[no-matching-overload]  # Falcon stubs

    # Health endpoints are always available
    app.add_route("/health", HealthResource())
    app.add_route("/ready", ReadyResource(deps.readiness_probe))

    if deps.pipeline is not None:
        _add_pipeline_routes(app, deps.pipeline)

    register_error_handlers(app)
    return app


def _add_pipeline_routes(app: falcon.asgi.App, pipeline: Pipeline) -> None:
    from gatehouse.api.deadletters.resources import (
        DeadLetterCollectionResource,
        DeadLetterResource,
        DeadLetterRetryResource,
    )
    from gatehouse.api.events.resources import EventBatchResource, EventResource

    app.add_route("/v1/events", EventResource(pipeline.orchestrator))
    app.add_route("/v1/events/batch", EventBatchResource(pipeline.orchestrator))

    store = pipeline.dead_letters
    app.add_route("/v1/dead-letters", DeadLetterCollectionResource(store))
    app.add_route("/v1/dead-letters/{dead_letter_id}", DeadLetterResource(store))
    app.add_route(
        "/v1/dead-letters/{dead_letter_id}/retry", DeadLetterRetryResource(store)
    )
