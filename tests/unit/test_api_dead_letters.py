"""HTTP tests for the dead-letter administration endpoints.

Usage
-----
Run with pytest::

    pytest tests/unit/test_api_dead_letters.py

"""

from __future__ import annotations

import typing as typ

import falcon
import falcon.testing
import pytest
import pytest_asyncio

from gatehouse.api.app import AppDependencies, create_app
from tests.helpers.envelopes import envelope_body

if typ.TYPE_CHECKING:
    from gatehouse.api.factory import Pipeline


@pytest_asyncio.fixture
async def conductor(
    pipeline: Pipeline,
) -> typ.AsyncIterator[falcon.testing.ASGIConductor]:
    """Yield an ASGI conductor for the full app on the test loop."""
    app = create_app(AppDependencies(pipeline=pipeline))
    async with falcon.testing.ASGIConductor(app) as conductor:
        yield conductor


async def _reject(
    conductor: falcon.testing.ASGIConductor, **overrides: object
) -> None:
    body = envelope_body(**overrides)
    result = await conductor.simulate_post("/v1/events", body=body)
    assert result.status in {falcon.HTTP_400, falcon.HTTP_422}, "expected rejection"


async def _first_dead_letter_id(conductor: falcon.testing.ASGIConductor) -> str:
    listing = await conductor.simulate_get("/v1/dead-letters")
    return listing.json["items"][0]["id"]


class TestListDeadLetters:
    """Tests for GET /v1/dead-letters."""

    @pytest.mark.asyncio
    async def test_lists_newest_first_with_total(
        self, conductor: falcon.testing.ASGIConductor
    ) -> None:
        """The page carries items, total and the effective paging."""
        await _reject(conductor, id="evt-1", subject=None)
        await _reject(conductor, id="evt-2", data={"id": "x"})

        result = await conductor.simulate_get(
            "/v1/dead-letters", params={"limit": "1"}
        )

        assert result.status == falcon.HTTP_200, "expected HTTP 200"
        body = result.json
        assert body["total"] == 2, "wrong total"
        assert (body["limit"], body["offset"]) == (1, 0), "wrong paging"
        [item] = body["items"]
        assert item["rejectionReason"] in {"MISSING_SUBJECT", "INVALID_PAYLOAD"}
        assert "rawPayload" in item, "missing raw payload"

    @pytest.mark.asyncio
    async def test_filters_by_reason(
        self, conductor: falcon.testing.ASGIConductor
    ) -> None:
        """Reason filters are case-insensitive."""
        await _reject(conductor, id="evt-1", subject=None)
        await _reject(conductor, id="evt-2", data={"id": "x"})

        result = await conductor.simulate_get(
            "/v1/dead-letters", params={"reason": "invalid_payload"}
        )

        assert result.status == falcon.HTTP_200, "expected HTTP 200"
        assert [i["cloudeventsId"] for i in result.json["items"]] == ["evt-2"]

    @pytest.mark.asyncio
    async def test_unresolved_filter_hides_resolved(
        self, conductor: falcon.testing.ASGIConductor
    ) -> None:
        """Resolved dead letters drop out of the unresolved view."""
        await _reject(conductor, id="evt-1", subject=None)
        dead_letter_id = await _first_dead_letter_id(conductor)
        await conductor.simulate_post(f"/v1/dead-letters/{dead_letter_id}/retry")

        result = await conductor.simulate_get(
            "/v1/dead-letters", params={"unresolved": "true"}
        )

        assert result.json["total"] == 0, "resolved letter should be hidden"

    @pytest.mark.asyncio
    async def test_limit_is_capped(
        self, conductor: falcon.testing.ASGIConductor
    ) -> None:
        """Page sizes above the maximum are clamped."""
        result = await conductor.simulate_get(
            "/v1/dead-letters", params={"limit": "1000"}
        )

        assert result.json["limit"] == 100, "limit should be capped"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("params", "field"),
        [({"reason": "NOT_A_REASON"}, "reason"), ({"offset": "-1"}, None)],
        ids=["unknown-reason", "negative-offset"],
    )
    async def test_bad_query_returns_400(
        self,
        conductor: falcon.testing.ASGIConductor,
        params: dict[str, str],
        field: str | None,
    ) -> None:
        """Invalid filters are client errors."""
        result = await conductor.simulate_get("/v1/dead-letters", params=params)

        assert result.status == falcon.HTTP_400, "expected HTTP 400"
        assert result.json.get("field") == field, "wrong field"


class TestSingleDeadLetter:
    """Tests for GET and retry of one dead letter."""

    @pytest.mark.asyncio
    async def test_get_returns_record(
        self, conductor: falcon.testing.ASGIConductor
    ) -> None:
        """A known id returns the full operator view."""
        await _reject(conductor, id="evt-1", subject=None)
        dead_letter_id = await _first_dead_letter_id(conductor)

        result = await conductor.simulate_get(f"/v1/dead-letters/{dead_letter_id}")

        assert result.status == falcon.HTTP_200, "expected HTTP 200"
        assert result.json["id"] == dead_letter_id, "wrong id"
        assert result.json["failureStage"] == "VALIDATION", "wrong stage"
        assert result.json["resolved"] is False, "should be unresolved"

    @pytest.mark.asyncio
    async def test_retry_marks_resolved(
        self, conductor: falcon.testing.ASGIConductor
    ) -> None:
        """Retry is bookkeeping: the record becomes resolved."""
        await _reject(conductor, id="evt-1", subject=None)
        dead_letter_id = await _first_dead_letter_id(conductor)

        first = await conductor.simulate_post(
            f"/v1/dead-letters/{dead_letter_id}/retry"
        )
        second = await conductor.simulate_post(
            f"/v1/dead-letters/{dead_letter_id}/retry"
        )

        assert first.status == falcon.HTTP_200, "expected HTTP 200"
        assert first.json["resolved"] is True, "should be resolved"
        assert first.json["resolvedAt"] is not None, "missing resolvedAt"
        assert second.json["resolvedAt"] == first.json["resolvedAt"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["GET", "POST"])
    async def test_unknown_id_returns_404(
        self, conductor: falcon.testing.ASGIConductor, method: str
    ) -> None:
        """Unknown dead letters are reported as not found."""
        path = "/v1/dead-letters/missing"
        if method == "POST":
            path += "/retry"

        result = await conductor.simulate_request(method, path)

        assert result.status == falcon.HTTP_404, "expected HTTP 404"
        assert result.json["title"] == "Dead letter not found", "wrong title"
        assert "missing" in result.json["description"], "missing id in description"
