"""Canonicalisation of event types, correlation ids and event times.

Every function here is total: malformed input is passed through or
replaced with a server-side default, never rejected.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import datetime as dt
import logging
import re
import typing as typ
import uuid

from gatehouse.common.time import utcnow

if typ.TYPE_CHECKING:
    from gatehouse.envelope.models import CloudEventEnvelope

logger = logging.getLogger(__name__)

DEFAULT_TYPE_DOMAIN = "cce"
DEFAULT_CANONICAL_PREFIX = "org.openphc.cce"
CORRELATION_PREFIX = "corr-"


@dc.dataclass(frozen=True, slots=True)
class NormalisedEvent:
    """Envelope attributes after canonicalisation."""

    event_type: str | None
    correlation_id: str
    event_time: dt.datetime


class EventNormaliser:
    """Rewrite source-specific envelope values into canonical form.

    Parameters
    ----------
    type_domain
        Leading segment of legacy type strings such as
        ``cce.encounter.created``.
    canonical_prefix
        Namespace that canonical types live under; legacy types are
        rewritten to ``<canonical_prefix>.<entity>``.
    clock
        Source of "now" for missing or unparseable event times.

    """

    def __init__(
        self,
        *,
        type_domain: str = DEFAULT_TYPE_DOMAIN,
        canonical_prefix: str = DEFAULT_CANONICAL_PREFIX,
        clock: cabc.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Compile the legacy type pattern for *type_domain*."""
        self._canonical_prefix = canonical_prefix.rstrip(".")
        self._legacy_type = re.compile(
            rf"^{re.escape(type_domain)}\.([a-z]+)\.(?:created|updated|deleted)$"
        )
        self._clock = clock

    def normalise_type(self, raw_type: str | None) -> str | None:
        """Return the canonical event type for *raw_type*."""
        if raw_type is None or not raw_type.strip():
            return raw_type
        if raw_type.startswith(f"{self._canonical_prefix}."):
            return raw_type

        match = self._legacy_type.match(raw_type)
        if match is None:
            logger.debug("Event type %s has no canonical mapping", raw_type)
            return raw_type
        return f"{self._canonical_prefix}.{match.group(1)}"

    @staticmethod
    def resolve_correlation_id(raw_id: str | None) -> str:
        """Return *raw_id*, or a fresh ``corr-`` id when it is blank."""
        if raw_id is not None and raw_id.strip():
            return raw_id
        return f"{CORRELATION_PREFIX}{uuid.uuid4()}"

    def resolve_event_time(self, raw_time: str | None) -> dt.datetime:
        """Parse an ISO-8601 offset timestamp, defaulting to now in UTC.

        Timestamps without an offset are treated as unparseable.
        """
        if raw_time is None or not raw_time.strip():
            return self._clock()
        try:
            parsed = dt.datetime.fromisoformat(raw_time.strip())
        except ValueError:
            logger.warning("Unparseable event time %r, using server time", raw_time)
            return self._clock()
        if parsed.tzinfo is None:
            logger.warning(
                "Event time %r has no UTC offset, using server time", raw_time
            )
            return self._clock()
        return parsed.astimezone(dt.UTC)

    def normalise(self, envelope: CloudEventEnvelope) -> NormalisedEvent:
        """Return the canonical view of *envelope*."""
        return NormalisedEvent(
            event_type=self.normalise_type(envelope.type),
            correlation_id=self.resolve_correlation_id(envelope.correlation_id),
            event_time=self.resolve_event_time(envelope.time),
        )
