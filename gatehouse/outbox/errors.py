"""Errors raised while delivering outbox records to the broker."""

from __future__ import annotations


class BrokerPublishError(RuntimeError):
    """Raised when the broker does not acknowledge a message."""

    @property
    def detail(self) -> str:
        """Return the human-readable failure description."""
        return str(self)

    @classmethod
    def timed_out(cls, timeout_seconds: float) -> BrokerPublishError:
        """Return an error for an acknowledgement that never arrived."""
        return cls(f"broker acknowledgement timed out after {timeout_seconds:g}s")

    @classmethod
    def not_started(cls) -> BrokerPublishError:
        """Return an error for a send attempted before the client started."""
        return cls("broker client is not started")

    @classmethod
    def unreachable(cls, servers: str, exc: BaseException) -> BrokerPublishError:
        """Return an error for a producer that could not connect."""
        return cls(f"broker unreachable at {servers}: {type(exc).__name__}: {exc}")

    @classmethod
    def from_broker(cls, exc: BaseException) -> BrokerPublishError:
        """Wrap a client-library exception."""
        return cls(f"broker rejected message: {type(exc).__name__}: {exc}")


class OutboxRecordNotFoundError(LookupError):
    """Raised when a delivery update targets a missing OutboxRecord."""

    def __init__(self, record_id: str) -> None:
        """Record the identifier that could not be found."""
        self.record_id = record_id
        super().__init__(f"outbox record {record_id} does not exist")
