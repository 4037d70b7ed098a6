"""Payload validator protocol and the default resource-shape validator."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc


@dc.dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome reported by a payload validator."""

    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @classmethod
    def ok(cls, warnings: cabc.Iterable[str] = ()) -> ValidationResult:
        """Return a passing result, optionally carrying warnings."""
        return cls(valid=True, warnings=tuple(warnings))

    @classmethod
    def failed(
        cls, errors: cabc.Iterable[str], warnings: cabc.Iterable[str] = ()
    ) -> ValidationResult:
        """Return a failing result with *errors*."""
        return cls(valid=False, errors=tuple(errors), warnings=tuple(warnings))


class PayloadValidator(typ.Protocol):
    """Schema-aware validator for clinical resource payloads."""

    def validate(
        self, payload: cabc.Mapping[str, typ.Any], subject_hint: str | None
    ) -> ValidationResult:
        """Validate *payload*, using *subject_hint* for consistency checks."""
        ...


class ResourceShapeValidator:
    """Minimal structural validator for FHIR-style JSON resources.

    Only the shape every resource shares is checked: a ``resourceType`` must
    be present, and a ``subject.reference`` that does not mention the
    envelope subject is reported as a warning.  Deployments that need full
    profile validation supply their own ``PayloadValidator``.
    """

    def validate(
        self, payload: cabc.Mapping[str, typ.Any], subject_hint: str | None
    ) -> ValidationResult:
        """Check the resource type and subject reference of *payload*."""
        errors: list[str] = []
        warnings: list[str] = []

        resource_type = payload.get("resourceType")
        if not isinstance(resource_type, str) or not resource_type.strip():
            errors.append("resourceType is required")

        reference = _subject_reference(payload)
        if subject_hint and reference is not None and subject_hint not in reference:
            warnings.append(
                f"subject.reference {reference!r} does not match "
                f"envelope subject {subject_hint!r}"
            )

        if errors:
            return ValidationResult.failed(errors, warnings)
        return ValidationResult.ok(warnings)


def _subject_reference(payload: cabc.Mapping[str, typ.Any]) -> str | None:
    subject = payload.get("subject")
    if not isinstance(subject, dict):
        return None
    reference = subject.get("reference")
    return reference if isinstance(reference, str) else None
