"""Environment variable parsing shared by the configuration dataclasses.

Every helper treats an unset or blank variable as "use the default" and
raises ``ValueError`` naming the variable when a value is present but
malformed, so misconfiguration fails at start-up rather than mid-request.
"""

from __future__ import annotations

import os

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _raw(env_var: str) -> str | None:
    raw = os.environ.get(env_var, "")
    return raw.strip() or None


def parse_int(env_var: str, default: int, *, minimum: int = 1) -> int:
    """Read an integer env var no smaller than *minimum*."""
    raw = _raw(env_var)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        msg = f"{env_var} must be an integer, got: {raw!r}"
        raise ValueError(msg) from exc
    if value < minimum:
        msg = f"{env_var} must be at least {minimum}, got: {value}"
        raise ValueError(msg)
    return value


def parse_bool(env_var: str, *, default: bool) -> bool:
    """Read a boolean env var such as ``true``/``0``/``yes``."""
    raw = _raw(env_var)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    msg = f"{env_var} must be a boolean, got: {raw!r}"
    raise ValueError(msg)


def parse_str(env_var: str, default: str) -> str:
    """Read a string env var, falling back to *default* when blank."""
    raw = _raw(env_var)
    return default if raw is None else raw
