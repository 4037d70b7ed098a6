"""Unit tests for the femtologging helpers in gatehouse.logging."""

from __future__ import annotations

import pytest

from gatehouse.logging import (
    configure_logging,
    log_error,
    log_exception,
    log_info,
    log_warning,
    normalize_log_level,
)


class _FakeLogger:
    """Collects log calls for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, object | None, bool]] = []

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> str:
        self.calls.append((level, message, exc_info, stack_info))
        return message


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("warning", ("WARNING", False)),
        ("  error ", ("ERROR", False)),
        ("trace", ("TRACE", False)),
        (None, ("INFO", True)),
        ("", ("INFO", True)),
        ("verbose", ("INFO", True)),
    ],
)
def test_normalize_log_level(raw: str | None, expected: tuple[str, bool]) -> None:
    """Known levels are upper-cased; anything else falls back to INFO."""
    assert normalize_log_level(raw) == expected, f"unexpected result for {raw!r}"


def test_helpers_format_before_emitting() -> None:
    """Each helper formats its template and passes its level through."""
    logger = _FakeLogger()

    log_info(logger, "sweeper started (interval=%ss)", 30)
    log_warning(logger, "retry sweep disabled")
    log_error(logger, "bad port %r", "http")

    assert logger.calls == [
        ("INFO", "sweeper started (interval=30s)", None, False),
        ("WARNING", "retry sweep disabled", None, False),
        ("ERROR", "bad port 'http'", None, False),
    ], "expected formatted messages at each level"


def test_template_without_args_is_not_interpolated() -> None:
    """A literal percent sign survives when no arguments are given."""
    logger = _FakeLogger()

    log_info(logger, "100% of events published")

    assert logger.calls[0][1] == "100% of events published"


def test_log_exception_attaches_exception() -> None:
    """log_exception records the exception as exc_info."""
    logger = _FakeLogger()
    exc = RuntimeError("broker down")

    log_exception(logger, "Unhandled error processing POST /v1/events", exc)

    assert logger.calls == [
        ("ERROR", "Unhandled error processing POST /v1/events", exc, False)
    ], "expected ERROR entry carrying the exception"


def test_log_warning_forwards_exc_info() -> None:
    """Explicit exc_info is forwarded unchanged."""
    logger = _FakeLogger()
    exc = ValueError("boom")

    log_warning(logger, "warning: %s", "oops", exc_info=exc)

    assert logger.calls == [("WARNING", "warning: oops", exc, False)]


@pytest.mark.parametrize(
    ("raw", "normalized", "invalid"),
    [("DEBUG", "DEBUG", False), ("nope", "INFO", True)],
)
def test_configure_logging(
    monkeypatch: pytest.MonkeyPatch,
    raw: str,
    normalized: str,
    *,
    invalid: bool,
) -> None:
    """configure_logging configures femtologging with the normalized level."""
    captured: dict[str, object] = {}

    def fake_basic_config(**kwargs: object) -> None:
        captured.update(kwargs)

    monkeypatch.setattr("gatehouse.logging.basicConfig", fake_basic_config)

    assert configure_logging(raw) == (normalized, invalid)
    assert captured == {"level": normalized, "force": False}, (
        "expected basicConfig to keep existing handlers"
    )
