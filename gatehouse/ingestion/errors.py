"""Errors rejecting a whole ingestion request."""

from __future__ import annotations


class BatchSizeError(ValueError):
    """Raised when a batch is empty or larger than the configured limit."""

    def __init__(self, message: str, *, size: int, limit: int) -> None:
        """Record the offending size and the limit."""
        self.size = size
        self.limit = limit
        super().__init__(message)

    @classmethod
    def empty(cls, limit: int) -> BatchSizeError:
        """Return an error for a batch with no events."""
        return cls("batch must contain at least one event", size=0, limit=limit)

    @classmethod
    def too_large(cls, size: int, limit: int) -> BatchSizeError:
        """Return an error for a batch above *limit* events."""
        return cls(
            f"batch contains {size} events, exceeding the limit of {limit}",
            size=size,
            limit=limit,
        )
