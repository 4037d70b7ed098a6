"""Single-event and batch ingestion of clinical CloudEvents."""

from __future__ import annotations

from .config import IngestionConfig
from .errors import BatchSizeError
from .models import (
    INTERNAL_ERROR_REASON,
    BatchIngestionResponse,
    IngestionResponse,
    IngestionStatus,
)
from .observability import (
    ErrorCategory,
    IngestionEventLogger,
    IngestionEventType,
    categorize_error,
)
from .service import IngestionDependencies, IngestionOrchestrator

__all__ = [
    "INTERNAL_ERROR_REASON",
    "BatchIngestionResponse",
    "BatchSizeError",
    "ErrorCategory",
    "IngestionConfig",
    "IngestionDependencies",
    "IngestionEventLogger",
    "IngestionEventType",
    "IngestionOrchestrator",
    "IngestionResponse",
    "IngestionStatus",
    "categorize_error",
]
