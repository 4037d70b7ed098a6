"""Dead-letter administration resources.

Operators list, inspect and resolve dead letters through these routes.
Resolving is bookkeeping only; the event is not re-submitted.

Usage
-----
Register the resources on the Falcon app::

    app.add_route("/v1/dead-letters", DeadLetterCollectionResource(store))
    app.add_route("/v1/dead-letters/{dead_letter_id}", DeadLetterResource(store))
    app.add_route(
        "/v1/dead-letters/{dead_letter_id}/retry",
        DeadLetterRetryResource(store),
    )

"""

from __future__ import annotations

import typing as typ

import falcon
import msgspec

from gatehouse.api.errors import DeadLetterNotFoundError, InvalidInputError
from gatehouse.deadletter import DeadLetterListOptions, to_dead_letter_view
from gatehouse.records import RejectionReason

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from gatehouse.deadletter import DeadLetterStore
    from gatehouse.records import DeadLetterRecord

__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "DeadLetterCollectionResource",
    "DeadLetterResource",
    "DeadLetterRetryResource",
]

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _serialize(record: DeadLetterRecord) -> dict[str, typ.Any]:
    return msgspec.to_builtins(to_dead_letter_view(record))


def _parse_reason(raw: str | None) -> RejectionReason | None:
    """Return the ``reason`` filter, rejecting unknown values."""
    if raw is None:
        return None
    try:
        return RejectionReason(raw.strip().upper())
    except ValueError as exc:
        allowed = ", ".join(RejectionReason)
        msg = f"unknown rejection reason {raw!r}; expected one of {allowed}"
        raise InvalidInputError(msg, field="reason") from exc


def _list_options(req: Request) -> DeadLetterListOptions:
    # Falcon answers 400 itself for non-integer or non-boolean values.
    limit = req.get_param_as_int("limit", default=DEFAULT_PAGE_SIZE)
    offset = req.get_param_as_int("offset", default=0)
    return DeadLetterListOptions(
        reason=_parse_reason(req.get_param("reason")),
        source=req.get_param("source"),
        unresolved_only=req.get_param_as_bool("unresolved", default=False),
        limit=min(limit, MAX_PAGE_SIZE),
        offset=offset,
    )


class DeadLetterCollectionResource:
    """Resource for ``GET /v1/dead-letters``."""

    def __init__(self, store: DeadLetterStore) -> None:
        """Store the dead-letter store used for listing."""
        self._store = store

    async def on_get(self, req: Request, resp: Response) -> None:
        """Handle GET request listing dead letters newest first.

        Parameters
        ----------
        req
            Falcon request carrying ``reason``, ``source``, ``unresolved``,
            ``limit`` and ``offset`` query parameters.
        resp
            Falcon response populated with one page of dead letters.

        """
        options = _list_options(req)
        page = await self._store.list_dead_letters(options)
        resp.media = {
            "items": [_serialize(record) for record in page.items],
            "total": page.total,
            "limit": options.limit,
            "offset": options.offset,
        }
        resp.status = falcon.HTTP_200


class DeadLetterResource:
    """Resource for ``GET /v1/dead-letters/{dead_letter_id}``."""

    def __init__(self, store: DeadLetterStore) -> None:
        """Store the dead-letter store used for lookups."""
        self._store = store

    async def on_get(
        self, _req: Request, resp: Response, *, dead_letter_id: str
    ) -> None:
        """Handle GET request for one dead letter."""
        record = await self._store.get(dead_letter_id)
        if record is None:
            raise DeadLetterNotFoundError(dead_letter_id)
        resp.media = _serialize(record)
        resp.status = falcon.HTTP_200


class DeadLetterRetryResource:
    """Resource for ``POST /v1/dead-letters/{dead_letter_id}/retry``.

    Marks the dead letter resolved.  Resolving twice is harmless.

    """

    def __init__(self, store: DeadLetterStore) -> None:
        """Store the dead-letter store used for resolution."""
        self._store = store

    async def on_post(
        self, _req: Request, resp: Response, *, dead_letter_id: str
    ) -> None:
        """Handle POST request resolving one dead letter."""
        record = await self._store.resolve(dead_letter_id)
        if record is None:
            raise DeadLetterNotFoundError(dead_letter_id)
        resp.media = _serialize(record)
        resp.status = falcon.HTTP_200
