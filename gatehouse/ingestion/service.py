"""Orchestration of single-event and batch ingestion.

The orchestrator runs one envelope through the pipeline in a fixed order:

1. structural validation of the envelope,
2. duplicate lookup in the cache and the audit table,
3. a durable RECEIVED audit row (the unique constraint settles races),
4. normalisation of type, correlation id and event time,
5. the payload validation gate,
6. the ACCEPTED transition together with its PENDING outbox row,
7. a first synchronous publish attempt.

Every rejection before step 6 is written to the dead-letter store and
re-raised for the caller to translate.  A failed publish is dead-lettered
too, but the event is still reported as accepted because the outbox retry
sweep owns delivery from then on.

The dedup cache only learns about an event once its row is ACCEPTED or
REJECTED, and the store lookup ignores rows still at RECEIVED.  A request
that fails between steps 3 and 6 therefore leaves a row that a
resubmission picks up and finishes.

Usage
-----
>>> orchestrator = IngestionOrchestrator(dependencies, config=IngestionConfig())
>>> response = await orchestrator.ingest_raw(request_body)
>>> response.status
<IngestionStatus.ACCEPTED: 'accepted'>

"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import datetime as dt
import typing as typ

import msgspec

from gatehouse.common.time import utcnow
from gatehouse.deadletter.classification import classify_failure
from gatehouse.deadletter.service import DeadLetterCapture
from gatehouse.envelope.errors import CloudEventValidationError, EnvelopeDecodeError
from gatehouse.envelope.models import (
    CloudEventEnvelope,
    decode_envelope,
    envelope_from_mapping,
)
from gatehouse.ingestion.config import IngestionConfig
from gatehouse.ingestion.errors import BatchSizeError
from gatehouse.ingestion.models import (
    INTERNAL_ERROR_REASON,
    BatchIngestionResponse,
    IngestionResponse,
    IngestionStatus,
)
from gatehouse.ingestion.observability import IngestionEventLogger
from gatehouse.outbox.errors import BrokerPublishError
from gatehouse.payload.errors import PayloadValidationError
from gatehouse.records.storage import InboundStatus

if typ.TYPE_CHECKING:
    from gatehouse.deadletter.service import DeadLetterStore
    from gatehouse.dedup.service import Deduplicator
    from gatehouse.envelope.normalisation import EventNormaliser, NormalisedEvent
    from gatehouse.envelope.validation import EnvelopeValidator
    from gatehouse.outbox.publisher import OutboxPublisher
    from gatehouse.payload.gate import PayloadValidationGate
    from gatehouse.records.audit import AuditStore
    from gatehouse.records.storage import OutboxRecord

_ITEM_REJECTIONS = (
    CloudEventValidationError,
    EnvelopeDecodeError,
    PayloadValidationError,
)
_INTERNAL_ERROR_DETAIL = "internal error while processing event"


@dc.dataclass(frozen=True, slots=True)
class IngestionDependencies:
    """Pipeline collaborators used by ``IngestionOrchestrator``.

    Attributes
    ----------
    validator
        Structural envelope checks.
    normaliser
        Canonicalisation of type, correlation id and time.
    payload_gate
        Payload validation for recognised content types.
    deduplicator
        Cache and audit-table duplicate lookup.
    audit
        Writer of InboundRecord and OutboxRecord rows.
    publisher
        First publish attempt and outcome bookkeeping.
    dead_letters
        Sink for rejected and undeliverable events.

    """

    validator: EnvelopeValidator
    normaliser: EventNormaliser
    payload_gate: PayloadValidationGate
    deduplicator: Deduplicator
    audit: AuditStore
    publisher: OutboxPublisher
    dead_letters: DeadLetterStore


class IngestionOrchestrator:
    """Run envelopes through the ingestion pipeline."""

    def __init__(
        self,
        dependencies: IngestionDependencies,
        *,
        config: IngestionConfig | None = None,
        event_logger: IngestionEventLogger | None = None,
        clock: cabc.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Configure the orchestrator.

        Parameters
        ----------
        dependencies
            Pipeline collaborators grouped into a single parameter object.
        config
            Optional request limits; uses defaults if not provided.
        event_logger
            Optional structured event logger; a default one is created.
        clock
            Source of the ``receivedAt`` timestamp.

        """
        self._deps = dependencies
        self._config = config or IngestionConfig()
        self._event_logger = event_logger or IngestionEventLogger()
        self._clock = clock

    @property
    def config(self) -> IngestionConfig:
        """Return the ingestion limits in force."""
        return self._config

    @property
    def dependencies(self) -> IngestionDependencies:
        """Return the collaborators this orchestrator was built with."""
        return self._deps

    async def ingest(self, envelope: CloudEventEnvelope) -> IngestionResponse:
        """Ingest one decoded envelope.

        Returns
        -------
        IngestionResponse
            ``accepted`` for a new event, even when its first publish
            failed, or ``duplicate`` for a resubmission.

        Raises
        ------
        CloudEventValidationError
            If the envelope is structurally invalid.
        PayloadValidationError
            If the payload gate rejects the data.

        """
        received_at = self._clock()
        try:
            self._deps.validator.validate(envelope)
        except CloudEventValidationError as exc:
            await self._reject_invalid_envelope(envelope, exc)
            raise

        # Validation guarantees the identifying attributes are present.
        event_id = typ.cast("str", envelope.id)
        source = typ.cast("str", envelope.source)
        subject = typ.cast("str", envelope.subject)

        if await self._deps.deduplicator.is_duplicate(source, event_id):
            self._event_logger.log_duplicate(event_id, source, layer="lookup")
            return self._duplicate(envelope, received_at)

        inbound, created = await self._deps.audit.record_received(
            envelope, received_at=received_at
        )
        if not created:
            if inbound.status is not InboundStatus.RECEIVED:
                return self._settled_elsewhere(envelope, received_at)
            self._event_logger.log_resumed(event_id, source, inbound.id)

        normalised = self._deps.normaliser.normalise(envelope)
        try:
            self._deps.payload_gate.check(envelope)
        except PayloadValidationError as exc:
            if not await self._reject_invalid_payload(
                envelope, inbound.id, normalised, exc
            ):
                return self._settled_elsewhere(envelope, received_at)
            await self._deps.deduplicator.mark_processed(source, event_id)
            raise

        outbox = await self._deps.audit.accept(inbound.id, envelope, normalised)
        if outbox is None:
            return self._settled_elsewhere(envelope, received_at)
        await self._deps.deduplicator.mark_processed(source, event_id)

        published = await self._publish(envelope, outbox)
        self._event_logger.log_accepted(
            event_id,
            source,
            subject,
            normalised.correlation_id,
            published=published,
        )
        return IngestionResponse(
            event_id=event_id,
            status=IngestionStatus.ACCEPTED,
            correlation_id=normalised.correlation_id,
            published_topic=self._deps.publisher.topic,
            received_at=received_at,
        )

    async def ingest_raw(self, body: bytes) -> IngestionResponse:
        """Decode a JSON request body and ingest it.

        Raises
        ------
        EnvelopeDecodeError
            If the body is not a JSON object with well-typed attributes.

        """
        try:
            envelope = decode_envelope(body)
        except EnvelopeDecodeError as exc:
            await self._reject_undecodable(exc)
            raise
        return await self.ingest(envelope)

    async def ingest_mapping(self, raw: object) -> IngestionResponse:
        """Ingest one already-parsed JSON value, such as a batch element.

        Raises
        ------
        EnvelopeDecodeError
            If *raw* is not a JSON object with well-typed attributes.

        """
        try:
            if not isinstance(raw, cabc.Mapping):
                raise EnvelopeDecodeError.not_an_object(msgspec.json.encode(raw))
            envelope = envelope_from_mapping(raw)
        except EnvelopeDecodeError as exc:
            await self._reject_undecodable(exc)
            raise
        return await self.ingest(envelope)

    async def ingest_batch(
        self, items: cabc.Sequence[object]
    ) -> BatchIngestionResponse:
        """Ingest *items* in submission order, one result per item.

        Items are processed sequentially so that events for the same
        subject keep their relative order.  A rejected item never aborts
        the rest of the batch; an unexpected failure is reported for that
        item as ``INTERNAL_ERROR``.

        Raises
        ------
        BatchSizeError
            If the batch is empty or larger than ``max_batch_size``.

        """
        limit = self._config.max_batch_size
        if not items:
            raise BatchSizeError.empty(limit)
        if len(items) > limit:
            raise BatchSizeError.too_large(len(items), limit)

        started_at = self._clock()
        results = [await self._ingest_item(item) for item in items]
        response = BatchIngestionResponse.from_results(results)
        self._event_logger.log_batch_completed(
            response.total,
            response.accepted,
            response.rejected,
            self._clock() - started_at,
        )
        return response

    async def _ingest_item(self, item: object) -> IngestionResponse:
        try:
            if isinstance(item, CloudEventEnvelope):
                return await self.ingest(item)
            return await self.ingest_mapping(item)
        except _ITEM_REJECTIONS as exc:
            failure = classify_failure(exc)
            return IngestionResponse(
                event_id=_item_event_id(item),
                status=IngestionStatus.REJECTED,
                reason=failure.reason,
                details=exc.detail,
            )
        except Exception as exc:  # noqa: BLE001 - one item must not abort the batch
            self._event_logger.log_failed(
                _item_event_id(item), _item_attribute(item, "source"), exc
            )
            return IngestionResponse(
                event_id=_item_event_id(item),
                status=IngestionStatus.REJECTED,
                reason=INTERNAL_ERROR_REASON,
                details=_INTERNAL_ERROR_DETAIL,
            )

    async def _publish(
        self, envelope: CloudEventEnvelope, outbox: OutboxRecord
    ) -> bool:
        try:
            await self._deps.publisher.publish(outbox)
        except BrokerPublishError as exc:
            self._event_logger.log_publish_failed(
                outbox.external_event_id, outbox.subject, exc
            )
            await self._deps.dead_letters.capture(
                DeadLetterCapture.for_envelope(
                    envelope,
                    classify_failure(exc),
                    exc.detail,
                    inbound_record_id=outbox.inbound_record_id,
                    correlation_id=outbox.correlation_id,
                )
            )
            return False
        return True

    async def _reject_invalid_envelope(
        self, envelope: CloudEventEnvelope, error: CloudEventValidationError
    ) -> None:
        failure = classify_failure(error)
        self._event_logger.log_rejected(
            envelope.id, envelope.source, failure, error.detail
        )
        await self._deps.dead_letters.capture(
            DeadLetterCapture.for_envelope(envelope, failure, error.detail)
        )

    async def _reject_invalid_payload(
        self,
        envelope: CloudEventEnvelope,
        inbound_record_id: str,
        normalised: NormalisedEvent,
        error: PayloadValidationError,
    ) -> bool:
        failure = classify_failure(error)
        if not await self._deps.audit.mark_rejected(
            inbound_record_id, failure.reason, error.detail
        ):
            return False
        self._event_logger.log_rejected(
            envelope.id, envelope.source, failure, error.detail
        )
        await self._deps.dead_letters.capture(
            DeadLetterCapture.for_envelope(
                envelope,
                failure,
                error.detail,
                inbound_record_id=inbound_record_id,
                correlation_id=normalised.correlation_id,
            )
        )
        return True

    async def _reject_undecodable(self, error: EnvelopeDecodeError) -> None:
        failure = classify_failure(error)
        self._event_logger.log_rejected(
            error.attribute("id"), error.attribute("source"), failure, error.detail
        )
        await self._deps.dead_letters.capture(
            DeadLetterCapture.for_undecodable(error, failure)
        )

    def _settled_elsewhere(
        self, envelope: CloudEventEnvelope, received_at: dt.datetime
    ) -> IngestionResponse:
        self._event_logger.log_duplicate(
            typ.cast("str", envelope.id),
            typ.cast("str", envelope.source),
            layer="constraint",
        )
        return self._duplicate(envelope, received_at)

    @staticmethod
    def _duplicate(
        envelope: CloudEventEnvelope, received_at: dt.datetime
    ) -> IngestionResponse:
        return IngestionResponse(
            event_id=envelope.id,
            status=IngestionStatus.DUPLICATE,
            correlation_id=envelope.correlation_id,
            received_at=received_at,
        )


def _item_attribute(item: object, name: str) -> str | None:
    if isinstance(item, CloudEventEnvelope):
        value = getattr(item, name)
    elif isinstance(item, cabc.Mapping):
        value = item.get(name)
    else:
        return None
    return value if isinstance(value, str) else None


def _item_event_id(item: object) -> str | None:
    return _item_attribute(item, "id")
