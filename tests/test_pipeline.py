"""Tests for the insight pipeline against a real temporary database."""

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from clientlens.config_schema import AppConfig
from clientlens.core.errors import ErrorCategory, InsightGenerationError, LLMServiceError
from clientlens.core.logging import get_correlation_id
from clientlens.db.store import DatabaseStore
from clientlens.engine.pipeline import (
    InsightPipeline,
    group_by_thread,
    last_run_state_key,
)
from factories import OTHER_OWNER, OWNER, make_client, make_communication

RISK_ANSWER = json.dumps(
    [
        {
            "category": "Risk",
            "summary": "Client expressing budget concerns about project scope",
            "evidence": "I'm worried the costs are getting too high",
            "suggested_action": "Schedule a call to discuss budget constraints",
            "confidence": 0.85,
        }
    ]
)

BASE = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


async def _seed(store: DatabaseStore, *communications) -> None:
    await store.save_client(make_client())
    for communication in communications:
        await store.save_communication(communication)


def _pipeline(store: DatabaseStore, llm: MagicMock, config: AppConfig) -> InsightPipeline:
    return InsightPipeline(store=store, llm_client=llm, config=config)


class TestGroupByThread:
    def test_groups_and_falls_back_to_id(self) -> None:
        a1 = make_communication("a1", thread_id="A")
        b1 = make_communication("b1", thread_id="B")
        a2 = make_communication("a2", thread_id="A")
        solo = make_communication("solo", thread_id=None)

        threads = group_by_thread([a1, b1, a2, solo])

        assert list(threads) == ["A", "B", "comm-solo"]
        assert [c.provider_id for c in threads["A"]] == ["a1", "a2"]


class TestInsightPipeline:
    @pytest.mark.asyncio
    async def test_risk_insight_end_to_end(
        self, store: DatabaseStore, mock_llm: MagicMock, sample_config: AppConfig
    ) -> None:
        await _seed(
            store,
            make_communication(
                "m1",
                sent_at=BASE,
                body="I'm worried the costs are getting too high for what we discussed.",
            ),
        )
        mock_llm.complete = AsyncMock(return_value=RISK_ANSWER)

        result = await _pipeline(store, mock_llm, sample_config).run(OWNER)

        assert result.threads == 1
        assert result.communications_processed == 1
        assert result.insights_inserted == 1
        assert result.attribution["direct"] == 1

        insights = await store.list_insights(OWNER)
        assert len(insights) == 1
        assert insights[0].category == "Risk"
        assert insights[0].confidence == 0.85
        assert insights[0].client_id == "client-acme"
        assert insights[0].raw_output == RISK_ANSWER

        communication = await store.get_communication(OWNER, "comm-m1")
        assert communication.client_id == "client-acme"

    @pytest.mark.asyncio
    async def test_rerun_updates_instead_of_duplicating(
        self, store: DatabaseStore, mock_llm: MagicMock, sample_config: AppConfig
    ) -> None:
        await _seed(store, make_communication("m1"))
        mock_llm.complete = AsyncMock(return_value=RISK_ANSWER)
        pipeline = _pipeline(store, mock_llm, sample_config)

        await pipeline.run(OWNER)
        second = await pipeline.run(OWNER)

        assert second.insights_inserted == 0
        assert second.insights_updated == 1
        assert len(await store.list_insights(OWNER)) == 1

    @pytest.mark.asyncio
    async def test_thread_anchored_on_newest_message(
        self, store: DatabaseStore, mock_llm: MagicMock, sample_config: AppConfig
    ) -> None:
        await _seed(
            store,
            make_communication("old", sent_at=BASE),
            make_communication("new", sent_at=BASE + timedelta(hours=2)),
        )
        mock_llm.complete = AsyncMock(return_value=RISK_ANSWER)

        result = await _pipeline(store, mock_llm, sample_config).run(OWNER)

        assert result.threads == 1
        assert result.communications_processed == 2
        insights = await store.list_insights(OWNER)
        assert insights[0].communication_id == "comm-new"
        assert mock_llm.complete.await_args.kwargs["communication_id"] == "comm-new"

    @pytest.mark.asyncio
    async def test_automated_messages_excluded_and_flagged(
        self, store: DatabaseStore, mock_llm: MagicMock, sample_config: AppConfig
    ) -> None:
        await _seed(
            store,
            make_communication("bot", thread_id="t-bot", sender_email="noreply@service.com"),
        )

        result = await _pipeline(store, mock_llm, sample_config).run(OWNER)

        assert result.automated == 1
        assert result.threads == 0
        mock_llm.complete.assert_not_awaited()
        assert (await store.get_communication(OWNER, "comm-bot")).is_automated is True

    @pytest.mark.asyncio
    async def test_prose_answer_stored_as_raw_output(
        self, store: DatabaseStore, mock_llm: MagicMock, sample_config: AppConfig
    ) -> None:
        await _seed(store, make_communication("m1"))
        mock_llm.complete = AsyncMock(return_value="Nothing noteworthy in this thread.")

        result = await _pipeline(store, mock_llm, sample_config).run(OWNER)

        assert result.insights_written == 0
        assert result.raw_outputs == 1
        insights = await store.list_insights(OWNER)
        assert insights[0].category is None

    @pytest.mark.asyncio
    async def test_unattributed_thread_still_analyzed(
        self, store: DatabaseStore, mock_llm: MagicMock, sample_config: AppConfig
    ) -> None:
        await _seed(store, make_communication("m1", sender_email="stranger@gmail.com"))
        mock_llm.complete = AsyncMock(
            side_effect=['{"client_id": null, "confidence": 0.2}', RISK_ANSWER]
        )

        result = await _pipeline(store, mock_llm, sample_config).run(OWNER)

        assert result.attribution["none"] == 1
        assert result.insights_inserted == 1
        prompt = mock_llm.complete.await_args_list[1].args[0]
        assert "UNIDENTIFIED CLIENT" in prompt
        insights = await store.list_insights(OWNER)
        assert insights[0].client_id is None

    @pytest.mark.asyncio
    async def test_service_unavailable_raises_generation_error(
        self, store: DatabaseStore, mock_llm: MagicMock, sample_config: AppConfig
    ) -> None:
        await _seed(store, make_communication("m1"))
        mock_llm.complete = AsyncMock(
            side_effect=LLMServiceError("connection refused", ErrorCategory.TRANSIENT)
        )

        with pytest.raises(InsightGenerationError) as exc_info:
            await _pipeline(store, mock_llm, sample_config).run(OWNER)

        assert exc_info.value.retryable is True
        assert exc_info.value.thread_id == "thread-1"
        assert await store.list_insights(OWNER) == []
        assert await store.get_state(last_run_state_key(OWNER)) is None

    @pytest.mark.asyncio
    async def test_fatal_service_error_not_retryable(
        self, store: DatabaseStore, mock_llm: MagicMock, sample_config: AppConfig
    ) -> None:
        await _seed(store, make_communication("m1"))
        mock_llm.complete = AsyncMock(
            side_effect=LLMServiceError("invalid api key", ErrorCategory.FATAL, status_code=401)
        )

        with pytest.raises(InsightGenerationError) as exc_info:
            await _pipeline(store, mock_llm, sample_config).run(OWNER)

        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_owners_are_isolated(
        self, store: DatabaseStore, mock_llm: MagicMock, sample_config: AppConfig
    ) -> None:
        await _seed(store, make_communication("m1"))
        await store.save_communication(make_communication("m1", owner_id=OTHER_OWNER, id="other-m1"))
        mock_llm.complete = AsyncMock(return_value=RISK_ANSWER)

        await _pipeline(store, mock_llm, sample_config).run(OWNER)

        assert len(await store.list_insights(OWNER)) == 1
        assert await store.list_insights(OTHER_OWNER) == []
        assert (await store.get_communication(OTHER_OWNER, "other-m1")).client_id is None

    @pytest.mark.asyncio
    async def test_records_run_state_and_scopes_correlation_id(
        self, store: DatabaseStore, mock_llm: MagicMock, sample_config: AppConfig
    ) -> None:
        await _seed(store, make_communication("m1", sent_at=BASE))
        seen_run_ids: list[str | None] = []

        async def complete(*args, **kwargs) -> str:
            seen_run_ids.append(get_correlation_id())
            return ""

        mock_llm.complete = AsyncMock(side_effect=complete)

        result = await _pipeline(store, mock_llm, sample_config).run(OWNER)

        assert await store.get_state(last_run_state_key(OWNER)) is not None
        assert seen_run_ids == [result.run_id]
        assert get_correlation_id() is None

    @pytest.mark.asyncio
    async def test_correlation_id_cleared_after_failed_run(
        self, store: DatabaseStore, mock_llm: MagicMock, sample_config: AppConfig
    ) -> None:
        await _seed(store, make_communication("m1", sent_at=BASE))
        mock_llm.complete = AsyncMock(
            side_effect=LLMServiceError("bad request", ErrorCategory.FATAL, status_code=400)
        )

        with pytest.raises(InsightGenerationError):
            await _pipeline(store, mock_llm, sample_config).run(OWNER)

        assert get_correlation_id() is None

    @pytest.mark.asyncio
    async def test_limit_bounds_batch(
        self, store: DatabaseStore, mock_llm: MagicMock, sample_config: AppConfig
    ) -> None:
        await _seed(
            store,
            *[
                make_communication(f"m{i}", thread_id=f"t{i}", sent_at=BASE + timedelta(hours=i))
                for i in range(4)
            ],
        )

        result = await _pipeline(store, mock_llm, sample_config).run(OWNER, limit=2)

        assert result.communications_fetched == 2
        assert result.threads == 2
