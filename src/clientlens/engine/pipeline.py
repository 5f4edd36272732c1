"""Insight pipeline: one bounded batch of an owner's communications per run.

Steps per run:
1. Generate insight_run_id and set it as the log correlation ID
2. Load the owner's most recent communications (newest first)
3. Flag automated messages and exclude them
4. Group the rest by conversation thread
5. Per thread: attribute unattributed communications, extract insights
   from the capped window, persist against the anchor (newest) message
6. Prune old LLM logs and record the run time

Threads are processed one after another; there is no fan-out. Degraded
sub-steps (semantic attribution, unparsable output, invalid insights,
single write failures) are counted in the result. An unreachable LLM
service aborts the run with InsightGenerationError.

Usage:
    from clientlens.engine.pipeline import InsightPipeline

    pipeline = InsightPipeline(store=store, llm_client=llm, config=config)
    result = await pipeline.run("owner-1")
"""

from __future__ import annotations

import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from clientlens.analysis.attribution import ClientAttributionResolver
from clientlens.analysis.automated import AutomatedMessageClassifier
from clientlens.analysis.extraction import InsightExtractor
from clientlens.analysis.prompts import ThreadMessage
from clientlens.core.errors import DatabaseError, InsightGenerationError, LLMServiceError
from clientlens.core.logging import get_logger, set_correlation_id
from clientlens.engine.persistence import InsightWriter

if TYPE_CHECKING:
    from clientlens.config_schema import AppConfig
    from clientlens.db.store import ClientProfile, Communication, DatabaseStore
    from clientlens.llm.client import LLMClient

logger = get_logger(__name__)

LAST_RUN_STATE_KEY = "last_insight_run"


def last_run_state_key(owner_id: str) -> str:
    return f"{LAST_RUN_STATE_KEY}:{owner_id}"


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class PipelineRunResult:
    """Result of a single pipeline run."""

    run_id: str
    owner_id: str
    duration_ms: int = 0
    communications_fetched: int = 0
    communications_processed: int = 0
    automated: int = 0
    threads: int = 0
    attribution: Counter[str] = field(default_factory=Counter)
    insights_inserted: int = 0
    insights_updated: int = 0
    raw_outputs: int = 0
    insights_dropped: int = 0
    write_failures: int = 0
    logs_pruned: int = 0

    @property
    def insights_written(self) -> int:
        return self.insights_inserted + self.insights_updated


def group_by_thread(communications: list[Communication]) -> dict[str, list[Communication]]:
    """Group communications by thread, preserving input order within and across threads."""
    threads: dict[str, list[Communication]] = {}
    for communication in communications:
        threads.setdefault(communication.thread_key, []).append(communication)
    return threads


class InsightPipeline:
    """Runs attribution and extraction over an owner's recent communications.

    Each run generates a UUID4 insight_run_id for log correlation.

    Attributes:
        _store: DatabaseStore for persistence
        _config: Application configuration
        _resolver: Client attribution resolver
        _extractor: Insight extractor
        _writer: Insight writer
        _automated: Automated-message classifier
    """

    def __init__(
        self,
        store: DatabaseStore,
        llm_client: LLMClient,
        config: AppConfig,
        resolver: ClientAttributionResolver | None = None,
        extractor: InsightExtractor | None = None,
        writer: InsightWriter | None = None,
        automated_classifier: AutomatedMessageClassifier | None = None,
    ):
        self._store = store
        self._config = config
        self._resolver = resolver or ClientAttributionResolver(llm_client, config)
        self._extractor = extractor or InsightExtractor(llm_client, config)
        self._writer = writer or InsightWriter(store)
        self._automated = automated_classifier or AutomatedMessageClassifier(
            extra_senders=config.automated_filter.extra_senders
        )

    async def run(self, owner_id: str, limit: int | None = None) -> PipelineRunResult:
        """Execute one pipeline run for an owner.

        Args:
            owner_id: Owner whose communications to analyze
            limit: Override for pipeline.batch_size

        Returns:
            PipelineRunResult with counts and timing

        Raises:
            InsightGenerationError: LLM service unavailable (after retries)
                or rejected the request
            DatabaseError: Communications or clients could not be loaded
        """
        run_id = str(uuid.uuid4())
        set_correlation_id(run_id)
        start_time = time.monotonic()

        result = PipelineRunResult(run_id=run_id, owner_id=owner_id)
        batch_size = limit or self._config.pipeline.batch_size

        logger.info("pipeline_run_start", owner_id=owner_id, batch_size=batch_size)

        try:
            communications = await self._store.list_communications(
                owner_id,
                limit=batch_size,
                since=self._lookback_cutoff(),
            )
            result.communications_fetched = len(communications)

            candidates = await self._filter_automated(owner_id, communications, result)
            if not candidates:
                logger.info("pipeline_run_nothing_to_analyze", owner_id=owner_id)
            else:
                clients = await self._store.list_clients(owner_id)
                client_map = {client.id: client for client in clients}
                threads = group_by_thread(candidates)

                for thread_id, messages in threads.items():
                    await self._process_thread(
                        owner_id, thread_id, messages, clients, client_map, result
                    )

            await self._store.set_state(
                last_run_state_key(owner_id),
                datetime.now(UTC).isoformat(),
            )

            if self._config.llm_logging.enabled:
                try:
                    result.logs_pruned = await self._store.prune_llm_logs(
                        self._config.llm_logging.retention_days
                    )
                except DatabaseError as e:
                    logger.warning("log_pruning_failed", error=str(e))

        except (InsightGenerationError, DatabaseError) as e:
            logger.error("pipeline_run_error", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            result.duration_ms = int((time.monotonic() - start_time) * 1000)

            logger.info(
                "pipeline_run_complete",
                duration_ms=result.duration_ms,
                communications_fetched=result.communications_fetched,
                communications_processed=result.communications_processed,
                automated=result.automated,
                threads=result.threads,
                attribution=dict(result.attribution),
                insights_inserted=result.insights_inserted,
                insights_updated=result.insights_updated,
                raw_outputs=result.raw_outputs,
                insights_dropped=result.insights_dropped,
                write_failures=result.write_failures,
            )
            set_correlation_id(None)

        return result

    def _lookback_cutoff(self) -> datetime | None:
        days = self._config.pipeline.lookback_days
        if not days:
            return None
        return datetime.now(UTC) - timedelta(days=days)

    async def _filter_automated(
        self,
        owner_id: str,
        communications: list[Communication],
        result: PipelineRunResult,
    ) -> list[Communication]:
        """Drop automated messages, flagging newly detected ones in the store."""
        if not self._config.automated_filter.enabled:
            return communications

        kept: list[Communication] = []
        newly_flagged: list[str] = []
        for communication in communications:
            if not communication.is_automated and self._automated.is_automated(
                communication.sender_email,
                communication.subject,
                communication.body,
            ):
                communication.is_automated = True
                newly_flagged.append(communication.id)

            if communication.is_automated:
                result.automated += 1
            else:
                kept.append(communication)

        if newly_flagged:
            try:
                await self._store.mark_communications_automated(owner_id, newly_flagged)
            except DatabaseError as e:
                logger.warning("automated_flag_failed", count=len(newly_flagged), error=str(e))

        return kept

    async def _process_thread(
        self,
        owner_id: str,
        thread_id: str,
        messages: list[Communication],
        clients: list[ClientProfile],
        client_map: dict[str, ClientProfile],
        result: PipelineRunResult,
    ) -> None:
        for communication in messages:
            if communication.client_id is None:
                await self._attribute(owner_id, communication, clients, result)

        thread_messages = [
            ThreadMessage.from_client(c, client_map.get(c.client_id) if c.client_id else None)
            for c in messages
        ]
        window = self._extractor.cap(thread_messages)
        anchor = window[0].communication

        try:
            extraction = await self._extractor.extract(window, communication_id=anchor.id)
        except LLMServiceError as e:
            raise InsightGenerationError(
                f"Insight generation unavailable for thread {thread_id}: {e}",
                thread_id=thread_id,
                retryable=e.retryable,
            ) from e

        outcome = await self._writer.persist(owner_id, anchor, extraction)

        result.threads += 1
        result.communications_processed += len(window)
        result.insights_inserted += outcome.inserted
        result.insights_updated += outcome.updated
        result.raw_outputs += outcome.raw_written
        result.write_failures += outcome.failures
        result.insights_dropped += extraction.dropped

        logger.debug(
            "thread_processed",
            thread_id=thread_id,
            messages=len(window),
            inserted=outcome.inserted,
            updated=outcome.updated,
            raw_written=outcome.raw_written,
        )

    async def _attribute(
        self,
        owner_id: str,
        communication: Communication,
        clients: list[ClientProfile],
        result: PipelineRunResult,
    ) -> None:
        attribution = await self._resolver.resolve(communication, clients)
        result.attribution[attribution.method] += 1

        if attribution.client_id is None:
            return

        communication.client_id = attribution.client_id
        logger.debug(
            "communication_attributed",
            communication_id=communication.id,
            client_id=attribution.client_id,
            method=attribution.method,
            confidence=attribution.confidence,
        )
        try:
            await self._store.update_communication_attribution(
                owner_id, communication.id, attribution.client_id
            )
        except DatabaseError as e:
            result.write_failures += 1
            logger.warning(
                "attribution_write_failed",
                communication_id=communication.id,
                error=str(e),
            )
