"""Durable records: inbound audit rows, outbox entries and dead letters."""

from __future__ import annotations

from .audit import AuditStore, InboundRecordPersistError
from .errors import InboundRecordNotFoundError, TimezoneAwareRequiredError
from .storage import (
    Base,
    DeadLetterRecord,
    FailureStage,
    InboundRecord,
    InboundStatus,
    OutboxRecord,
    PublishStatus,
    RejectionReason,
    UTCDateTime,
    init_gatehouse_storage,
)

__all__ = [
    "AuditStore",
    "Base",
    "DeadLetterRecord",
    "FailureStage",
    "InboundRecord",
    "InboundRecordNotFoundError",
    "InboundRecordPersistError",
    "InboundStatus",
    "OutboxRecord",
    "PublishStatus",
    "RejectionReason",
    "TimezoneAwareRequiredError",
    "UTCDateTime",
    "init_gatehouse_storage",
]
