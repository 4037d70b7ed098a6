"""Domain exceptions and Falcon error handlers for the API layer.

This module defines the exceptions raised by API resources and the Falcon
error handler functions that translate pipeline failures into HTTP
responses.  Every error body is a JSON object with ``title`` and
``description``; rejections also carry ``reason`` and, where known,
``field`` or ``errors``.

Usage
-----
Register every handler on the Falcon app::

    from gatehouse.api.errors import register_error_handlers

    register_error_handlers(app)

"""

from __future__ import annotations

import typing as typ

import falcon

from gatehouse.deadletter import NegativePaginationError, classify_failure
from gatehouse.envelope import CloudEventValidationError, EnvelopeDecodeError
from gatehouse.ingestion import BatchSizeError
from gatehouse.logging import get_logger, log_exception
from gatehouse.payload import PayloadValidationError

if typ.TYPE_CHECKING:
    from falcon.asgi import App, Request, Response

__all__ = [
    "DeadLetterNotFoundError",
    "InvalidInputError",
    "handle_batch_size",
    "handle_dead_letter_not_found",
    "handle_envelope_decode",
    "handle_envelope_validation",
    "handle_invalid_input",
    "handle_negative_pagination",
    "handle_payload_validation",
    "handle_unexpected_error",
    "register_error_handlers",
]

logger = get_logger(__name__)


class DeadLetterNotFoundError(Exception):
    """Raised when a dead letter is not found by id.

    Attributes
    ----------
    dead_letter_id
        Identifier that matched no dead letter.

    """

    def __init__(self, dead_letter_id: str) -> None:
        """Initialize with the unknown dead-letter id."""
        self.dead_letter_id = dead_letter_id
        super().__init__(f"No dead letter with id '{dead_letter_id}' exists.")


class InvalidInputError(Exception):
    """Raised for client validation errors that should map to HTTP 400.

    Use this instead of ``ValueError`` so that only *intentional*
    validation failures are surfaced to the caller, while genuine
    programmer mistakes still propagate as unhandled 500s.

    Attributes
    ----------
    reason
        Human-readable description of the validation failure.
    field
        Optional name of the input field that failed validation.

    """

    def __init__(self, reason: str, *, field: str | None = None) -> None:
        """Initialize with a validation reason and optional field name."""
        self.reason = reason
        self.field = field
        message = f"{field}: {reason}" if field is not None else reason
        super().__init__(message)


async def handle_envelope_validation(
    _req: Request,
    resp: Response,
    ex: CloudEventValidationError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``CloudEventValidationError`` to an HTTP 400 JSON response.

    Parameters
    ----------
    _req
        Falcon request (unused).
    resp
        Falcon response whose status and media are set.
    ex
        The rejection, tagged with the failing envelope field.
    _params
        URI template parameters (unused).

    """
    resp.status = falcon.HTTP_400
    resp.media = {
        "title": "Invalid envelope",
        "description": ex.detail,
        "field": ex.field,
        "reason": classify_failure(ex).reason,
    }


async def handle_envelope_decode(
    _req: Request,
    resp: Response,
    ex: EnvelopeDecodeError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``EnvelopeDecodeError`` to an HTTP 400 JSON response."""
    resp.status = falcon.HTTP_400
    resp.media = {
        "title": "Malformed envelope",
        "description": ex.detail,
        "reason": classify_failure(ex).reason,
    }


async def handle_payload_validation(
    _req: Request,
    resp: Response,
    ex: PayloadValidationError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``PayloadValidationError`` to an HTTP 422 JSON response.

    The validator messages are returned verbatim under ``errors``.
    """
    resp.status = falcon.HTTP_422
    resp.media = {
        "title": "Invalid payload",
        "description": ex.detail,
        "reason": classify_failure(ex).reason,
        "errors": list(ex.errors),
    }


async def handle_batch_size(
    _req: Request,
    resp: Response,
    ex: BatchSizeError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``BatchSizeError`` to an HTTP 400 JSON response."""
    resp.status = falcon.HTTP_400
    resp.media = {
        "title": "Invalid batch",
        "description": str(ex),
        "field": "events",
    }


async def handle_negative_pagination(
    _req: Request,
    resp: Response,
    ex: NegativePaginationError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``NegativePaginationError`` to an HTTP 400 JSON response."""
    resp.status = falcon.HTTP_400
    resp.media = {"title": "Invalid input", "description": str(ex)}


async def handle_invalid_input(
    _req: Request,
    resp: Response,
    ex: InvalidInputError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``InvalidInputError`` to an HTTP 400 JSON response.

    Parameters
    ----------
    _req
        Falcon request (unused).
    resp
        Falcon response whose status and media are set.
    ex
        The validation exception containing reason and optional field.
    _params
        URI template parameters (unused).

    """
    resp.status = falcon.HTTP_400
    media: dict[str, str] = {
        "title": "Invalid input",
        "description": ex.reason,
    }
    if ex.field is not None:
        media["field"] = ex.field
    resp.media = media


async def handle_dead_letter_not_found(
    _req: Request,
    resp: Response,
    ex: DeadLetterNotFoundError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``DeadLetterNotFoundError`` to an HTTP 404 JSON response."""
    resp.status = falcon.HTTP_404
    resp.media = {
        "title": "Dead letter not found",
        "description": str(ex),
    }


async def handle_unexpected_error(
    req: Request,
    resp: Response,
    ex: Exception,
    _params: dict[str, typ.Any],
) -> None:
    """Log an unhandled exception and return a detail-free HTTP 500.

    Falcon's own ``HTTPError`` handler remains the closer match for HTTP
    errors, so only genuine failures reach this handler.
    """
    log_exception(
        logger,
        f"Unhandled error processing {req.method} {req.path}",
        ex,
    )
    resp.status = falcon.HTTP_500
    resp.media = {
        "title": "Internal server error",
        "description": "An unexpected error occurred while processing the request.",
    }


def register_error_handlers(app: App) -> None:
    """Register every API error handler on *app*."""
    app.add_error_handler(Exception, handle_unexpected_error)
    app.add_error_handler(CloudEventValidationError, handle_envelope_validation)
    app.add_error_handler(EnvelopeDecodeError, handle_envelope_decode)
    app.add_error_handler(PayloadValidationError, handle_payload_validation)
    app.add_error_handler(BatchSizeError, handle_batch_size)
    app.add_error_handler(NegativePaginationError, handle_negative_pagination)
    app.add_error_handler(InvalidInputError, handle_invalid_input)
    app.add_error_handler(DeadLetterNotFoundError, handle_dead_letter_not_found)
