"""Dead-letter store for rejected and undeliverable events."""

from __future__ import annotations

from .classification import Classification, PipelineFailure, classify_failure
from .mapping import DeadLetterView, to_dead_letter_view
from .service import (
    DeadLetterCapture,
    DeadLetterListOptions,
    DeadLetterPage,
    DeadLetterStore,
    NegativePaginationError,
)

__all__ = [
    "Classification",
    "DeadLetterCapture",
    "DeadLetterListOptions",
    "DeadLetterPage",
    "DeadLetterStore",
    "DeadLetterView",
    "NegativePaginationError",
    "PipelineFailure",
    "classify_failure",
    "to_dead_letter_view",
]
