"""Dramatiq broker selection for the outbox sweep actor.

A real broker is expected to be configured by the worker process.  Test
runs, and processes that opt in with ``GATEHOUSE_ALLOW_STUB_BROKER``, fall
back to an in-memory ``StubBroker``.
"""

from __future__ import annotations

import os
import sys
import threading

import dramatiq
from dramatiq.brokers.stub import StubBroker

from gatehouse.common.env import parse_bool

_BROKER_LOCK = threading.Lock()
_broker_configured = False


def _stub_allowed() -> bool:
    under_pytest = "pytest" in sys.modules or "PYTEST_CURRENT_TEST" in os.environ
    return under_pytest or parse_bool("GATEHOUSE_ALLOW_STUB_BROKER", default=False)


def ensure_broker_configured() -> None:
    """Make sure a Dramatiq broker exists before an actor runs.

    Idempotent and thread-safe across Dramatiq worker threads.

    Raises
    ------
    RuntimeError
        If no broker is configured and a stub broker is not allowed.

    """
    global _broker_configured

    if _broker_configured:
        return

    with _BROKER_LOCK:
        if _broker_configured:
            return

        try:
            current = dramatiq.get_broker()
        except (ImportError, LookupError):
            current = None

        if current is None:
            if not _stub_allowed():
                message = (
                    "No Dramatiq broker configured. Set "
                    "GATEHOUSE_ALLOW_STUB_BROKER=1 for local runs or configure "
                    "a real broker."
                )
                raise RuntimeError(message)
            dramatiq.set_broker(StubBroker())
        _broker_configured = True
