"""Shared fixtures and steps for gatehouse feature tests.

Each scenario owns one ``asyncio.Runner`` so the database engine, the
pipeline and every step share a single event loop.
"""

from __future__ import annotations

import asyncio
import typing as typ

import pytest
from pytest_bdd import given, parsers, then, when
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from gatehouse.api.factory import PipelineSettings, build_pipeline
from gatehouse.deadletter import DeadLetterListOptions
from gatehouse.records import (
    InboundRecord,
    OutboxRecord,
    RejectionReason,
    init_gatehouse_storage,
)
from tests.helpers.broker import RecordingBroker
from tests.helpers.features import GatehouseContext, clinical_envelope, run

if typ.TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def gatehouse_context(tmp_path: Path) -> typ.Iterator[GatehouseContext]:
    """Provision a pipeline over a fresh SQLite database."""
    with asyncio.Runner() as runner:
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'features.db'}"
        )
        runner.run(init_gatehouse_storage(engine))
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        broker = RecordingBroker()
        pipeline = build_pipeline(
            session_factory, broker, settings=PipelineSettings()
        )
        try:
            yield {
                "runner": runner,
                "session_factory": session_factory,
                "broker": broker,
                "pipeline": pipeline,
            }
        finally:
            runner.run(engine.dispose())


@given("an empty gatehouse pipeline")
def given_empty_pipeline(gatehouse_context: GatehouseContext) -> None:
    """Ensure the pipeline fixture is provisioned."""
    assert "pipeline" in gatehouse_context, "pipeline should be set by fixture"


@given("the broker is unavailable")
def given_broker_unavailable(gatehouse_context: GatehouseContext) -> None:
    """Make every broker send fail."""
    gatehouse_context["broker"].fail = True


@when(parsers.parse('the event "{event_id}" for subject "{subject}" is submitted'))
def when_event_submitted(
    gatehouse_context: GatehouseContext, event_id: str, subject: str
) -> None:
    """Ingest one valid event."""
    orchestrator = gatehouse_context["pipeline"].orchestrator
    gatehouse_context["response"] = run(
        gatehouse_context, orchestrator.ingest(clinical_envelope(event_id, subject))
    )


@then(parsers.parse('the response status is "{status}"'))
def then_response_status(gatehouse_context: GatehouseContext, status: str) -> None:
    """Assert the outcome of the last submission."""
    response = gatehouse_context["response"]
    assert response.status == status, f"expected {status}, got {response.status}"


@then(parsers.parse('the broker holds {count:d} message keyed "{key}"'))
def then_broker_holds(
    gatehouse_context: GatehouseContext, count: int, key: str
) -> None:
    """Assert how many messages were published and their key."""
    keys = gatehouse_context["broker"].keys()
    assert keys == [key] * count, f"expected {count} x {key}, got {keys}"


@then(parsers.parse('a dead letter with reason "{reason}" is recorded'))
def then_dead_letter_recorded(
    gatehouse_context: GatehouseContext, reason: str
) -> None:
    """Assert a dead letter exists for *reason*."""
    store = gatehouse_context["pipeline"].dead_letters
    page = run(
        gatehouse_context,
        store.list_dead_letters(
            DeadLetterListOptions(reason=RejectionReason(reason))
        ),
    )
    assert page.total == 1, f"expected one {reason} dead letter, got {page.total}"


@then(parsers.parse('the inbound record for "{event_id}" is "{status}"'))
def then_inbound_status(
    gatehouse_context: GatehouseContext, event_id: str, status: str
) -> None:
    """Assert the audit state of an event."""

    async def _load() -> InboundRecord | None:
        async with gatehouse_context["session_factory"]() as session:
            return await session.scalar(
                select(InboundRecord).where(
                    InboundRecord.external_event_id == event_id
                )
            )

    record = run(gatehouse_context, _load())
    assert record is not None, f"no inbound record for {event_id}"
    assert record.status == status, f"expected {status}, got {record.status}"


@then(parsers.parse('the outbox record for "{event_id}" is "{status}"'))
def then_outbox_status(
    gatehouse_context: GatehouseContext, event_id: str, status: str
) -> None:
    """Assert the delivery state of an event."""

    async def _load() -> OutboxRecord | None:
        async with gatehouse_context["session_factory"]() as session:
            return await session.scalar(
                select(OutboxRecord).where(OutboxRecord.external_event_id == event_id)
            )

    record = run(gatehouse_context, _load())
    assert record is not None, f"no outbox record for {event_id}"
    assert record.publish_status == status, (
        f"expected {status}, got {record.publish_status}"
    )
