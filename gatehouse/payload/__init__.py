"""Validation gate for clinical resource payloads."""

from __future__ import annotations

from .errors import PayloadValidationError
from .gate import FHIR_JSON_CONTENT_TYPE, PayloadGateConfig, PayloadValidationGate
from .validator import PayloadValidator, ResourceShapeValidator, ValidationResult

__all__ = [
    "FHIR_JSON_CONTENT_TYPE",
    "PayloadGateConfig",
    "PayloadValidationError",
    "PayloadValidationGate",
    "PayloadValidator",
    "ResourceShapeValidator",
    "ValidationResult",
]
