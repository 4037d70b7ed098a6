"""HTTP tests for the event ingestion endpoints.

Usage
-----
Run with pytest::

    pytest tests/unit/test_api_events.py

"""

from __future__ import annotations

import typing as typ

import falcon
import falcon.testing
import pytest
import pytest_asyncio

from gatehouse.api.app import AppDependencies, create_app
from gatehouse.deadletter import DeadLetterListOptions
from tests.helpers.envelopes import envelope_body, envelope_mapping

if typ.TYPE_CHECKING:
    from gatehouse.api.factory import Pipeline
    from tests.helpers.broker import RecordingBroker


@pytest_asyncio.fixture
async def conductor(
    pipeline: Pipeline,
) -> typ.AsyncIterator[falcon.testing.ASGIConductor]:
    """Yield an ASGI conductor for the full app on the test loop."""
    app = create_app(AppDependencies(pipeline=pipeline))
    async with falcon.testing.ASGIConductor(app) as conductor:
        yield conductor


class TestPostEvent:
    """Tests for POST /v1/events."""

    @pytest.mark.asyncio
    async def test_new_event_returns_202(
        self, conductor: falcon.testing.ASGIConductor, broker: RecordingBroker
    ) -> None:
        """An accepted event answers 202 with its correlation id."""
        result = await conductor.simulate_post("/v1/events", body=envelope_body())

        assert result.status == falcon.HTTP_202, "expected HTTP 202"
        assert result.json["eventId"] == "evt-1", "wrong event id"
        assert result.json["status"] == "accepted", "wrong status"
        assert result.json["correlationId"] == "corr-abc", "wrong correlation id"
        assert result.json["publishedTopic"] == "cce.events.inbound", "wrong topic"
        assert "receivedAt" in result.json, "missing receivedAt"
        assert len(broker.sent) == 1, "expected one published message"

    @pytest.mark.asyncio
    async def test_resubmission_returns_200(
        self, conductor: falcon.testing.ASGIConductor
    ) -> None:
        """A duplicate answers 200 so clients can stop retrying."""
        await conductor.simulate_post("/v1/events", body=envelope_body())

        result = await conductor.simulate_post("/v1/events", body=envelope_body())

        assert result.status == falcon.HTTP_200, "expected HTTP 200"
        assert result.json["status"] == "duplicate", "wrong status"

    @pytest.mark.asyncio
    async def test_invalid_envelope_returns_400(
        self, conductor: falcon.testing.ASGIConductor, pipeline: Pipeline
    ) -> None:
        """Structural failures name the failing field."""
        result = await conductor.simulate_post(
            "/v1/events", body=envelope_body(source=None)
        )

        assert result.status == falcon.HTTP_400, "expected HTTP 400"
        assert result.json["title"] == "Invalid envelope", "wrong title"
        assert result.json["field"] == "source", "wrong field"
        assert result.json["reason"] == "INVALID_ENVELOPE", "wrong reason"
        page = await pipeline.dead_letters.list_dead_letters(DeadLetterListOptions())
        assert page.total == 1, "rejection should be dead-lettered"

    @pytest.mark.asyncio
    async def test_missing_subject_returns_400(
        self, conductor: falcon.testing.ASGIConductor
    ) -> None:
        """A missing subject carries its own rejection reason."""
        result = await conductor.simulate_post(
            "/v1/events", body=envelope_body(subject=None)
        )

        assert result.status == falcon.HTTP_400, "expected HTTP 400"
        assert result.json["reason"] == "MISSING_SUBJECT", "wrong reason"

    @pytest.mark.asyncio
    async def test_malformed_json_returns_400(
        self, conductor: falcon.testing.ASGIConductor
    ) -> None:
        """Bodies that are not JSON are reported as malformed."""
        result = await conductor.simulate_post("/v1/events", body=b"{oops")

        assert result.status == falcon.HTTP_400, "expected HTTP 400"
        assert result.json["title"] == "Malformed envelope", "wrong title"
        assert result.json["reason"] == "DESERIALIZATION_ERROR", "wrong reason"

    @pytest.mark.asyncio
    async def test_invalid_payload_returns_422(
        self, conductor: falcon.testing.ASGIConductor
    ) -> None:
        """Payload failures return the validator messages verbatim."""
        result = await conductor.simulate_post(
            "/v1/events", body=envelope_body(data={"id": "no-type"})
        )

        assert result.status == falcon.HTTP_422, "expected HTTP 422"
        assert result.json["reason"] == "INVALID_PAYLOAD", "wrong reason"
        assert result.json["errors"] == ["resourceType is required"], "wrong errors"

    @pytest.mark.asyncio
    async def test_broker_outage_still_returns_202(
        self, conductor: falcon.testing.ASGIConductor, broker: RecordingBroker
    ) -> None:
        """Delivery failures are the outbox's problem, not the client's."""
        broker.fail = True

        result = await conductor.simulate_post("/v1/events", body=envelope_body())

        assert result.status == falcon.HTTP_202, "expected HTTP 202"
        assert result.json["status"] == "accepted", "wrong status"


class TestPostBatch:
    """Tests for POST /v1/events/batch."""

    @pytest.mark.asyncio
    async def test_mixed_batch_returns_per_item_results(
        self, conductor: falcon.testing.ASGIConductor
    ) -> None:
        """Each element is reported in submission order."""
        result = await conductor.simulate_post(
            "/v1/events/batch",
            json={
                "events": [
                    envelope_mapping(id="evt-1"),
                    envelope_mapping(id="evt-2", subject=None),
                ]
            },
        )

        assert result.status == falcon.HTTP_202, "expected HTTP 202"
        body = result.json
        assert (body["total"], body["accepted"], body["rejected"]) == (2, 1, 1)
        assert body["results"][1]["reason"] == "MISSING_SUBJECT", "wrong reason"
        assert body["results"][1]["eventId"] == "evt-2", "wrong event id"

    @pytest.mark.asyncio
    async def test_empty_batch_returns_400(
        self, conductor: falcon.testing.ASGIConductor
    ) -> None:
        """An empty events array is a request error."""
        result = await conductor.simulate_post(
            "/v1/events/batch", json={"events": []}
        )

        assert result.status == falcon.HTTP_400, "expected HTTP 400"
        assert result.json["field"] == "events", "wrong field"

    @pytest.mark.asyncio
    async def test_oversized_batch_returns_400(
        self, conductor: falcon.testing.ASGIConductor, broker: RecordingBroker
    ) -> None:
        """More than the configured maximum is refused outright."""
        events = [envelope_mapping(id=f"evt-{n}") for n in range(101)]

        result = await conductor.simulate_post(
            "/v1/events/batch", json={"events": events}
        )

        assert result.status == falcon.HTTP_400, "expected HTTP 400"
        assert "exceeding the limit of 100" in result.json["description"]
        assert broker.sent == [], "nothing should be published"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [[envelope_mapping()], {"events": "not-a-list"}, {"items": []}],
        ids=["bare-array", "events-not-list", "missing-events"],
    )
    async def test_malformed_batch_body_returns_400(
        self, conductor: falcon.testing.ASGIConductor, payload: object
    ) -> None:
        """The body must be an object holding an ``events`` array."""
        result = await conductor.simulate_post("/v1/events/batch", json=payload)

        assert result.status == falcon.HTTP_400, "expected HTTP 400"
        assert result.json["title"] == "Invalid input", "wrong title"
