"""Observability primitives for event ingestion.

Provides structured logging and error categorisation for per-event
outcomes and batch throughput.  All events are emitted as structured log
lines suitable for parsing by log aggregators.
"""

from __future__ import annotations

import enum
import logging
import typing as typ

from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from gatehouse.envelope.errors import CloudEventValidationError, EnvelopeDecodeError
from gatehouse.outbox.errors import BrokerPublishError
from gatehouse.payload.errors import PayloadValidationError

if typ.TYPE_CHECKING:
    import datetime as dt

    from gatehouse.deadletter.classification import Classification

logger = logging.getLogger(__name__)


class IngestionEventType(enum.StrEnum):
    """Structured log event types for ingestion observability."""

    ACCEPTED = "ingestion.accepted"
    DUPLICATE = "ingestion.duplicate"
    RESUMED = "ingestion.resumed"
    REJECTED = "ingestion.rejected"
    PUBLISH_FAILED = "ingestion.publish_failed"
    FAILED = "ingestion.failed"
    BATCH_COMPLETED = "ingestion.batch.completed"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts."""

    CLIENT_ERROR = "client_error"
    TRANSIENT = "transient"
    DATABASE_CONNECTIVITY = "database_connectivity"
    DATA_INTEGRITY = "data_integrity"
    DATABASE_ERROR = "database_error"
    UNKNOWN = "unknown"


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (CloudEventValidationError, ErrorCategory.CLIENT_ERROR),
    (EnvelopeDecodeError, ErrorCategory.CLIENT_ERROR),
    (PayloadValidationError, ErrorCategory.CLIENT_ERROR),
    (BrokerPublishError, ErrorCategory.TRANSIENT),
    (OperationalError, ErrorCategory.DATABASE_CONNECTIVITY),
    (InterfaceError, ErrorCategory.DATABASE_CONNECTIVITY),
    (IntegrityError, ErrorCategory.DATA_INTEGRITY),
    (SQLAlchemyError, ErrorCategory.DATABASE_ERROR),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorise an exception for alerting purposes.

    Returns:
        ErrorCategory indicating the type of failure for alert routing.

    """
    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category
    return ErrorCategory.UNKNOWN


class IngestionEventLogger:
    """Emit structured ingestion events via Python logging.

    Accepted and duplicate events log at INFO, rejections and publish
    failures at WARNING, and unexpected failures at ERROR.
    """

    def log_accepted(  # noqa: PLR0913
        self,
        event_id: str,
        source: str,
        subject: str,
        correlation_id: str,
        *,
        published: bool,
    ) -> None:
        """Log an event accepted into the outbox."""
        logger.info(
            "[%s] event_id=%s source=%s subject=%s correlation_id=%s published=%s",
            IngestionEventType.ACCEPTED,
            event_id,
            source,
            subject,
            correlation_id,
            published,
        )

    def log_duplicate(self, event_id: str, source: str, *, layer: str) -> None:
        """Log a resubmission caught by dedup *layer*."""
        logger.info(
            "[%s] event_id=%s source=%s detected_by=%s",
            IngestionEventType.DUPLICATE,
            event_id,
            source,
            layer,
        )

    def log_resumed(self, event_id: str, source: str, record_id: str) -> None:
        """Log a resubmission picking up a row an earlier request left open."""
        logger.info(
            "[%s] event_id=%s source=%s inbound_record_id=%s",
            IngestionEventType.RESUMED,
            event_id,
            source,
            record_id,
        )

    def log_rejected(
        self,
        event_id: str | None,
        source: str | None,
        failure: Classification,
        detail: str,
    ) -> None:
        """Log an event rejected before acceptance."""
        logger.warning(
            "[%s] event_id=%s source=%s reason=%s stage=%s detail=%s",
            IngestionEventType.REJECTED,
            event_id,
            source,
            failure.reason,
            failure.stage,
            detail,
        )

    def log_publish_failed(
        self, event_id: str, subject: str, error: BrokerPublishError
    ) -> None:
        """Log a first publish attempt that left the event for the sweep."""
        logger.warning(
            "[%s] event_id=%s subject=%s error_category=%s error_message=%s",
            IngestionEventType.PUBLISH_FAILED,
            event_id,
            subject,
            categorize_error(error),
            error.detail,
        )

    def log_failed(
        self, event_id: str | None, source: str | None, error: BaseException
    ) -> None:
        """Log an unexpected failure with error categorisation."""
        logger.error(
            "[%s] event_id=%s source=%s error_type=%s error_category=%s "
            "error_message=%s",
            IngestionEventType.FAILED,
            event_id,
            source,
            type(error).__name__,
            categorize_error(error),
            str(error),
            exc_info=error,
        )

    def log_batch_completed(
        self, total: int, accepted: int, rejected: int, duration: dt.timedelta
    ) -> None:
        """Log batch completion with outcome counts."""
        logger.info(
            "[%s] total=%d accepted=%d rejected=%d duration_seconds=%.3f",
            IngestionEventType.BATCH_COMPLETED,
            total,
            accepted,
            rejected,
            duration.total_seconds(),
        )
