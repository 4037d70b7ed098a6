"""Health probe resources for Kubernetes liveness and readiness checks.

These resources do not touch the database.  Readiness optionally
consults a probe, typically "has lifespan startup finished", so traffic
is withheld until the pipeline can accept events.

Usage
-----
Register health endpoints on the Falcon app::

    from gatehouse.api.health.resources import HealthResource, ReadyResource

    app.add_route("/health", HealthResource())
    app.add_route("/ready", ReadyResource(probe=lambda: lifecycle.started))

"""

from __future__ import annotations

import typing as typ
from http import HTTPStatus

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from falcon.asgi import Request, Response

__all__ = ["HealthResource", "ReadyResource"]


class HealthResource:
    """Liveness probe resource returning ``{"status": "ok"}``.

    Always responds with HTTP 200 to indicate the process is alive.

    """

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Handle GET /health requests."""
        resp.media = {"status": "ok"}
        resp.status = HTTPStatus.OK


class ReadyResource:
    """Readiness probe resource returning ``{"status": "ready"}``.

    Responds 503 with ``{"status": "starting"}`` while the optional probe
    reports that dependencies are not yet up.

    """

    def __init__(self, probe: cabc.Callable[[], bool] | None = None) -> None:
        """Store the readiness probe; no probe means always ready."""
        self._probe = probe

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Handle GET /ready requests.

        Parameters
        ----------
        _req
            Falcon request (unused).
        resp
            Falcon response populated with readiness status.

        """
        if self._probe is not None and not self._probe():
            resp.media = {"status": "starting"}
            resp.status = HTTPStatus.SERVICE_UNAVAILABLE
            return
        resp.media = {"status": "ready"}
        resp.status = HTTPStatus.OK
