"""Tests for InsightWriter."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from clientlens.analysis.extraction import ExtractionResult, interpret_response
from clientlens.analysis.validation import InsightCandidate
from clientlens.core.errors import DatabaseError
from clientlens.db.store import DatabaseStore
from clientlens.engine.persistence import InsightWriter
from factories import OWNER, make_communication


def _candidate(category: str = "Risk") -> InsightCandidate:
    return InsightCandidate(
        category=category,
        summary="Client expressing budget concerns",
        evidence="costs are getting too high",
        suggested_action="Schedule a budget call",
        confidence=0.85,
    )


@pytest.mark.asyncio
async def test_structured_insights_inserted_then_updated(store: DatabaseStore) -> None:
    anchor = make_communication(client_id=None)
    anchor.id = await store.save_communication(anchor)
    result = ExtractionResult(insights=[_candidate(), _candidate("Note")], raw_output="[...]")
    writer = InsightWriter(store)

    first = await writer.persist(OWNER, anchor, result)
    second = await writer.persist(OWNER, anchor, result)

    assert (first.inserted, first.updated) == (2, 0)
    assert (second.inserted, second.updated) == (0, 2)
    assert len(await store.list_insights(OWNER)) == 2


@pytest.mark.asyncio
async def test_raw_output_kept_when_nothing_valid(store: DatabaseStore) -> None:
    anchor = make_communication()
    anchor.id = await store.save_communication(anchor)

    outcome = await InsightWriter(store).persist(
        OWNER, anchor, interpret_response("The client seems content.")
    )

    assert outcome.raw_written == 1
    insights = await store.list_insights(OWNER)
    assert len(insights) == 1
    assert insights[0].category is None
    assert insights[0].raw_output == "The client seems content."


@pytest.mark.asyncio
async def test_empty_output_writes_nothing(store: DatabaseStore) -> None:
    anchor = make_communication()
    anchor.id = await store.save_communication(anchor)

    outcome = await InsightWriter(store).persist(OWNER, anchor, ExtractionResult())

    assert outcome.raw_written == 0
    assert await store.list_insights(OWNER) == []


@pytest.mark.asyncio
async def test_failed_write_counted_and_others_continue() -> None:
    store = MagicMock()
    store.upsert_structured_insight = AsyncMock(
        side_effect=[DatabaseError("disk I/O error"), "inserted"]
    )
    result = ExtractionResult(insights=[_candidate(), _candidate("Upsell")], raw_output="[...]")

    outcome = await InsightWriter(store).persist(OWNER, make_communication(), result)

    assert outcome.failures == 1
    assert outcome.inserted == 1
    assert store.upsert_structured_insight.await_count == 2


@pytest.mark.asyncio
async def test_insight_carries_anchor_client() -> None:
    store = MagicMock()
    store.upsert_structured_insight = AsyncMock(return_value="inserted")
    anchor = make_communication(client_id="client-acme")

    await InsightWriter(store).persist(
        OWNER, anchor, ExtractionResult(insights=[_candidate()], raw_output="[...]")
    )

    kwargs = store.upsert_structured_insight.await_args.kwargs
    assert kwargs["communication_id"] == anchor.id
    assert kwargs["client_id"] == "client-acme"
    assert kwargs["raw_output"] == "[...]"
