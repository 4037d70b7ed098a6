"""Errors raised while decoding or validating event envelopes."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

_RAW_PREVIEW_LIMIT = 4096


class CloudEventValidationError(ValueError):
    """Raised when an envelope fails a structural check.

    Attributes
    ----------
    field
        Name of the envelope attribute that failed validation.
    limit_exceeded
        ``True`` when the failure is a size limit rather than a missing or
        malformed value.
    length_exceeded
        ``True`` when a text attribute is longer than the audit trail can
        store.

    """

    def __init__(
        self,
        field: str,
        message: str,
        *,
        limit_exceeded: bool = False,
        length_exceeded: bool = False,
    ) -> None:
        """Record the failing field alongside a human-readable message."""
        self.field = field
        self.limit_exceeded = limit_exceeded
        self.length_exceeded = length_exceeded
        super().__init__(message)

    @property
    def detail(self) -> str:
        """Return the human-readable failure description."""
        return str(self)

    @classmethod
    def missing(cls, field: str) -> CloudEventValidationError:
        """Return an error for a required attribute that is absent or blank."""
        return cls(field, f"{field} is required")

    @classmethod
    def unsupported_spec_version(
        cls, found: str | None, supported: str
    ) -> CloudEventValidationError:
        """Return an error for a spec version other than *supported*."""
        return cls(
            "specversion",
            f"specversion must be '{supported}', got: {found!r}",
        )

    @classmethod
    def too_long(
        cls, field: str, length: int, limit: int
    ) -> CloudEventValidationError:
        """Return an error for *field* longer than *limit* characters."""
        return cls(
            field,
            f"{field} must be at most {limit} characters, got: {length}",
            length_exceeded=True,
        )

    @classmethod
    def data_too_large(cls, size: int, limit: int) -> CloudEventValidationError:
        """Return an error for a serialised data payload above *limit* bytes."""
        return cls(
            "data",
            f"data is {size} bytes, exceeding the {limit} byte limit",
            limit_exceeded=True,
        )


class EnvelopeDecodeError(ValueError):
    """Raised when a request body cannot be read as an envelope.

    Attributes
    ----------
    raw_payload
        Whatever could be recovered from the body, kept for the dead-letter
        record.  Bodies that are not JSON objects are stored under ``raw``.

    """

    def __init__(self, message: str, *, raw_payload: dict[str, typ.Any]) -> None:
        """Keep the recoverable payload alongside the message."""
        self.raw_payload = raw_payload
        super().__init__(message)

    @property
    def detail(self) -> str:
        """Return the human-readable failure description."""
        return str(self)

    def attribute(self, name: str) -> str | None:
        """Return a string attribute recovered from the body, if any."""
        value = self.raw_payload.get(name)
        return value if isinstance(value, str) else None

    @classmethod
    def malformed_json(cls, body: bytes, reason: str) -> EnvelopeDecodeError:
        """Return an error for a body that is not valid JSON."""
        return cls(f"request body is not valid JSON: {reason}", raw_payload=_raw(body))

    @classmethod
    def not_an_object(cls, body: bytes) -> EnvelopeDecodeError:
        """Return an error for JSON that is not an object."""
        return cls("request body must be a JSON object", raw_payload=_raw(body))

    @classmethod
    def invalid_attributes(
        cls, raw: cabc.Mapping[str, typ.Any], reason: str
    ) -> EnvelopeDecodeError:
        """Return an error for an object whose attribute types are wrong."""
        return cls(
            f"envelope attributes are malformed: {reason}", raw_payload=dict(raw)
        )


def _raw(body: bytes) -> dict[str, typ.Any]:
    text = body.decode("utf-8", errors="replace")
    return {"raw": text[:_RAW_PREVIEW_LIMIT]}
