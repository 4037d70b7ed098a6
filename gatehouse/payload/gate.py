"""Gate deciding whether and how payload validation applies to an envelope.

Usage
-----
>>> gate = PayloadValidationGate(config=PayloadGateConfig(strict_mode=True))
>>> gate.applies_to("application/fhir+json")
True

"""

from __future__ import annotations

import dataclasses as dc
import logging
import typing as typ

from gatehouse.common.env import parse_bool
from gatehouse.payload.errors import PayloadValidationError
from gatehouse.payload.validator import ResourceShapeValidator

if typ.TYPE_CHECKING:
    from gatehouse.envelope.models import CloudEventEnvelope
    from gatehouse.payload.validator import PayloadValidator, ValidationResult

logger = logging.getLogger(__name__)

FHIR_JSON_CONTENT_TYPE = "application/fhir+json"


@dc.dataclass(frozen=True, slots=True)
class PayloadGateConfig:
    """Configuration for payload validation.

    Attributes
    ----------
    enabled
        When ``False`` the gate never invokes the validator.
    strict_mode
        When ``True`` validator warnings reject the event instead of being
        logged.
    content_type
        Media type identifying payloads the validator understands.

    """

    enabled: bool = True
    strict_mode: bool = False
    content_type: str = FHIR_JSON_CONTENT_TYPE

    @classmethod
    def from_env(cls) -> PayloadGateConfig:
        """Create configuration from environment variables.

        Reads ``GATEHOUSE_PAYLOAD_VALIDATION_ENABLED`` and
        ``GATEHOUSE_PAYLOAD_STRICT_MODE``.
        """
        return cls(
            enabled=parse_bool("GATEHOUSE_PAYLOAD_VALIDATION_ENABLED", default=True),
            strict_mode=parse_bool("GATEHOUSE_PAYLOAD_STRICT_MODE", default=False),
        )


def _media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


class PayloadValidationGate:
    """Invoke the payload validator for recognised content types only."""

    def __init__(
        self,
        validator: PayloadValidator | None = None,
        *,
        config: PayloadGateConfig | None = None,
    ) -> None:
        """Store the validator, defaulting to ``ResourceShapeValidator``."""
        self._validator = validator or ResourceShapeValidator()
        self._config = config or PayloadGateConfig()

    @property
    def strict_mode(self) -> bool:
        """Return whether warnings are escalated to rejections."""
        return self._config.strict_mode

    def applies_to(self, content_type: str | None) -> bool:
        """Return whether payloads of *content_type* are validated."""
        if not self._config.enabled or content_type is None:
            return False
        return _media_type(content_type) == _media_type(self._config.content_type)

    def check(self, envelope: CloudEventEnvelope) -> ValidationResult | None:
        """Validate the envelope payload when the gate applies.

        Returns
        -------
        ValidationResult | None
            The validator result, or ``None`` when validation was skipped.

        Raises
        ------
        PayloadValidationError
            If the payload is invalid, or carries warnings in strict mode.

        """
        if not self.applies_to(envelope.datacontenttype):
            return None

        result = self._validator.validate(envelope.data or {}, envelope.subject)
        if not result.valid:
            raise PayloadValidationError(result.errors)

        if result.warnings:
            if self._config.strict_mode:
                raise PayloadValidationError(result.warnings, escalated=True)
            logger.warning(
                "Payload warnings for event %s from %s: %s",
                envelope.id,
                envelope.source,
                "; ".join(result.warnings),
            )
        return result
