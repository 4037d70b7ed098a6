"""Errors raised by the payload validation gate."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc


class PayloadValidationError(ValueError):
    """Raised when a clinical payload fails validation.

    Attributes
    ----------
    errors
        Validator messages, verbatim.  In strict mode these are the
        warnings that were escalated.
    escalated
        ``True`` when the payload was valid but warnings were escalated by
        strict mode.

    """

    def __init__(self, errors: cabc.Sequence[str], *, escalated: bool = False) -> None:
        """Store the validator messages and build a summary message."""
        self.errors = tuple(errors)
        self.escalated = escalated
        summary = "; ".join(self.errors) or "payload rejected"
        prefix = "payload warnings escalated" if escalated else "payload invalid"
        super().__init__(f"{prefix}: {summary}")

    @property
    def detail(self) -> str:
        """Return the human-readable failure description."""
        return str(self)
