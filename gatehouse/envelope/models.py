"""CloudEvents envelope model and decoding helpers.

Envelopes are decoded leniently: every core attribute is optional at this
stage so that missing fields surface as field-tagged validation errors
rather than opaque decode failures.  Any attribute that is not part of the
CloudEvents core set is kept as an extension and preserved verbatim.
"""

from __future__ import annotations

import typing as typ

import msgspec

from gatehouse.envelope.errors import EnvelopeDecodeError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

CORE_ATTRIBUTES: frozenset[str] = frozenset(
    {
        "specversion",
        "id",
        "source",
        "type",
        "subject",
        "time",
        "datacontenttype",
        "data",
    }
)

# Domain extension attributes carried through to the outbound message.
CORRELATION_ID = "correlationid"
SOURCE_EVENT_ID = "sourceeventid"
FACILITY_ID = "facilityid"
PROTOCOL_INSTANCE_ID = "protocolinstanceid"
PROTOCOL_DEFINITION_ID = "protocoldefinitionid"
ACTION_ID = "actionid"


class CloudEventEnvelope(msgspec.Struct, frozen=True, kw_only=True):
    """One inbound event as submitted by a clinical data source."""

    specversion: str | None = None
    id: str | None = None
    source: str | None = None
    type: str | None = None
    subject: str | None = None
    time: str | None = None
    datacontenttype: str | None = None
    data: dict[str, typ.Any] | None = None
    extensions: dict[str, typ.Any] = msgspec.field(default_factory=dict)

    def extension(self, name: str) -> str | None:
        """Return extension *name* as text, or ``None`` when absent."""
        value = self.extensions.get(name)
        if value is None:
            return None
        return value if isinstance(value, str) else str(value)

    @property
    def correlation_id(self) -> str | None:
        """Return the caller-supplied correlation id, if any."""
        return self.extension(CORRELATION_ID)

    @property
    def facility_id(self) -> str | None:
        """Return the originating facility, if supplied."""
        return self.extension(FACILITY_ID)

    def to_raw_payload(self) -> dict[str, typ.Any]:
        """Return the envelope as a flat mapping, extensions included."""
        raw: dict[str, typ.Any] = {
            name: value
            for name in sorted(CORE_ATTRIBUTES)
            if (value := getattr(self, name)) is not None
        }
        raw.update(self.extensions)
        return raw


def envelope_from_mapping(raw: cabc.Mapping[str, typ.Any]) -> CloudEventEnvelope:
    """Build an envelope from a decoded JSON object.

    Raises
    ------
    EnvelopeDecodeError
        If a core attribute has the wrong JSON type.

    """
    core = {key: value for key, value in raw.items() if key in CORE_ATTRIBUTES}
    extensions = {
        key: value for key, value in raw.items() if key not in CORE_ATTRIBUTES
    }
    try:
        return msgspec.convert({**core, "extensions": extensions}, CloudEventEnvelope)
    except msgspec.ValidationError as exc:
        raise EnvelopeDecodeError.invalid_attributes(raw, str(exc)) from exc


def decode_envelope(body: bytes) -> CloudEventEnvelope:
    """Decode a JSON request body into an envelope.

    Raises
    ------
    EnvelopeDecodeError
        If the body is not a JSON object or its attributes are malformed.

    """
    try:
        raw = msgspec.json.decode(body)
    except msgspec.DecodeError as exc:
        raise EnvelopeDecodeError.malformed_json(body, str(exc)) from exc
    if not isinstance(raw, dict):
        raise EnvelopeDecodeError.not_an_object(body)
    return envelope_from_mapping(raw)
