"""Structural validation of inbound envelopes."""

from __future__ import annotations

import typing as typ

import msgspec

from gatehouse.envelope.errors import CloudEventValidationError

if typ.TYPE_CHECKING:
    from gatehouse.envelope.models import CloudEventEnvelope

SUPPORTED_SPEC_VERSION = "1.0"
MAX_ID_LENGTH = 256
MAX_ATTRIBUTE_LENGTH = 255
MAX_EXTENSION_LENGTH = 128

_REQUIRED_TEXT_ATTRIBUTES = ("source", "type", "subject")

# Upper bounds of the audit columns each value is copied into.
_ATTRIBUTE_LIMITS = (
    ("source", MAX_ATTRIBUTE_LENGTH),
    ("type", MAX_ATTRIBUTE_LENGTH),
    ("subject", MAX_ATTRIBUTE_LENGTH),
    ("datacontenttype", MAX_EXTENSION_LENGTH),
)
_EXTENSION_LIMITS = (
    ("correlationid", MAX_EXTENSION_LENGTH),
    ("facilityid", MAX_EXTENSION_LENGTH),
)


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _check_length(field: str, value: str | None, limit: int) -> None:
    if value is not None and len(value) > limit:
        raise CloudEventValidationError.too_long(field, len(value), limit)


class EnvelopeValidator:
    """Fail-fast structural checks applied before anything is persisted.

    Checks run in a fixed order and the first failure wins: spec version,
    id, source, type, subject, attribute lengths, data presence and finally
    the serialised data size when a limit is configured.  Length limits
    match the audit columns so an envelope that passes can always be
    stored.
    """

    def __init__(self, *, max_data_bytes: int | None = None) -> None:
        """Configure the optional serialised ``data`` size limit."""
        self._max_data_bytes = max_data_bytes

    def validate(self, envelope: CloudEventEnvelope) -> None:
        """Raise ``CloudEventValidationError`` for the first failing check."""
        if envelope.specversion != SUPPORTED_SPEC_VERSION:
            raise CloudEventValidationError.unsupported_spec_version(
                envelope.specversion, SUPPORTED_SPEC_VERSION
            )

        if envelope.id is None or _is_blank(envelope.id):
            raise CloudEventValidationError.missing("id")
        _check_length("id", envelope.id, MAX_ID_LENGTH)

        for name in _REQUIRED_TEXT_ATTRIBUTES:
            if _is_blank(getattr(envelope, name)):
                raise CloudEventValidationError.missing(name)

        for name, limit in _ATTRIBUTE_LIMITS:
            _check_length(name, getattr(envelope, name), limit)
        for name, limit in _EXTENSION_LIMITS:
            _check_length(name, envelope.extension(name), limit)

        if not envelope.data:
            raise CloudEventValidationError.missing("data")

        if self._max_data_bytes is not None:
            size = len(msgspec.json.encode(envelope.data))
            if size > self._max_data_bytes:
                raise CloudEventValidationError.data_too_large(
                    size, self._max_data_bytes
                )
