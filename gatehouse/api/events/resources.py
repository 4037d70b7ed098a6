"""Ingestion API resources for single and batch event submission.

Usage
-----
Register the resources on the Falcon app::

    app.add_route("/v1/events", EventResource(orchestrator))
    app.add_route("/v1/events/batch", EventBatchResource(orchestrator))

"""

from __future__ import annotations

import typing as typ

import falcon

from gatehouse.api.errors import InvalidInputError
from gatehouse.ingestion import IngestionStatus

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from gatehouse.ingestion import IngestionOrchestrator

__all__ = ["EventBatchResource", "EventResource"]


class EventResource:
    """Resource for ``POST /v1/events``.

    Responds 202 when the event is newly accepted and 200 when it was
    already processed.  Rejections propagate to the registered error
    handlers.

    """

    def __init__(self, orchestrator: IngestionOrchestrator) -> None:
        """Store the orchestrator that runs the pipeline."""
        self._orchestrator = orchestrator

    async def on_post(self, req: Request, resp: Response) -> None:
        """Handle POST request submitting one CloudEvents envelope.

        Parameters
        ----------
        req
            Falcon request whose body is the JSON envelope.
        resp
            Falcon response populated with the ingestion outcome.

        """
        body = await req.stream.read()
        result = await self._orchestrator.ingest_raw(body)

        resp.media = result.to_media()
        if result.status is IngestionStatus.DUPLICATE:
            resp.status = falcon.HTTP_200
        else:
            resp.status = falcon.HTTP_202


class EventBatchResource:
    """Resource for ``POST /v1/events/batch``.

    The body is ``{"events": [...]}``.  Each element is ingested
    independently and reported in submission order.

    """

    def __init__(self, orchestrator: IngestionOrchestrator) -> None:
        """Store the orchestrator that runs the pipeline."""
        self._orchestrator = orchestrator

    async def on_post(self, req: Request, resp: Response) -> None:
        """Handle POST request submitting a batch of envelopes."""
        media = await req.get_media()
        if not isinstance(media, dict):
            msg = "request body must be a JSON object"
            raise InvalidInputError(msg)
        events = media.get("events")
        if not isinstance(events, list):
            msg = "must be a JSON array of envelopes"
            raise InvalidInputError(msg, field="events")

        result = await self._orchestrator.ingest_batch(events)

        resp.media = result.to_media()
        resp.status = falcon.HTTP_202
