"""Envelope decoding, structural validation and normalisation."""

from __future__ import annotations

from .errors import CloudEventValidationError, EnvelopeDecodeError
from .models import (
    CORE_ATTRIBUTES,
    CloudEventEnvelope,
    decode_envelope,
    envelope_from_mapping,
)
from .normalisation import EventNormaliser, NormalisedEvent
from .validation import (
    MAX_ATTRIBUTE_LENGTH,
    MAX_EXTENSION_LENGTH,
    MAX_ID_LENGTH,
    SUPPORTED_SPEC_VERSION,
    EnvelopeValidator,
)

__all__ = [
    "CORE_ATTRIBUTES",
    "MAX_ATTRIBUTE_LENGTH",
    "MAX_EXTENSION_LENGTH",
    "MAX_ID_LENGTH",
    "SUPPORTED_SPEC_VERSION",
    "CloudEventEnvelope",
    "CloudEventValidationError",
    "EnvelopeDecodeError",
    "EnvelopeValidator",
    "EventNormaliser",
    "NormalisedEvent",
    "decode_envelope",
    "envelope_from_mapping",
]
