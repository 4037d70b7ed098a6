"""Map pipeline failures to dead-letter reasons and stages."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from gatehouse.envelope.errors import CloudEventValidationError, EnvelopeDecodeError
from gatehouse.outbox.errors import BrokerPublishError
from gatehouse.payload.errors import PayloadValidationError
from gatehouse.records.storage import FailureStage, RejectionReason

type PipelineFailure = (
    CloudEventValidationError
    | EnvelopeDecodeError
    | PayloadValidationError
    | BrokerPublishError
)


@dc.dataclass(frozen=True, slots=True)
class Classification:
    """Dead-letter reason and stage for one failure."""

    reason: RejectionReason
    stage: FailureStage


def classify_failure(error: PipelineFailure) -> Classification:
    """Return the reason and stage recorded for *error*."""
    match error:
        case CloudEventValidationError(field="subject", length_exceeded=False):
            return Classification(
                RejectionReason.MISSING_SUBJECT, FailureStage.VALIDATION
            )
        case CloudEventValidationError(limit_exceeded=True):
            return Classification(
                RejectionReason.PAYLOAD_TOO_LARGE, FailureStage.VALIDATION
            )
        case CloudEventValidationError():
            return Classification(
                RejectionReason.INVALID_ENVELOPE, FailureStage.VALIDATION
            )
        case EnvelopeDecodeError():
            return Classification(
                RejectionReason.DESERIALIZATION_ERROR, FailureStage.VALIDATION
            )
        case PayloadValidationError():
            return Classification(
                RejectionReason.INVALID_PAYLOAD, FailureStage.PROCESSING
            )
        case BrokerPublishError():
            return Classification(
                RejectionReason.BROKER_PUBLISH_FAILURE, FailureStage.PUBLISH
            )
        case _:
            typ.assert_never(error)
