"""Idempotent persistence of extraction results.

Structured insights are upserted on (communication, category), so running
the pipeline twice over the same thread refreshes the existing records
instead of duplicating them. When the model produced text but no valid
insight, the raw text is kept on the anchor communication.

A failed write is logged and counted; the remaining writes go ahead.

Usage:
    from clientlens.engine.persistence import InsightWriter

    writer = InsightWriter(store)
    outcome = await writer.persist(owner_id, anchor, extraction_result)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from clientlens.core.errors import DatabaseError
from clientlens.core.logging import get_logger

if TYPE_CHECKING:
    from clientlens.analysis.extraction import ExtractionResult
    from clientlens.db.store import Communication, DatabaseStore

logger = get_logger(__name__)


@dataclass
class PersistOutcome:
    """Write counts for one thread."""

    inserted: int = 0
    updated: int = 0
    raw_written: int = 0
    failures: int = 0


class InsightWriter:
    """Writes an ExtractionResult against its anchor communication."""

    def __init__(self, store: DatabaseStore):
        self._store = store

    async def persist(
        self,
        owner_id: str,
        communication: Communication,
        result: ExtractionResult,
    ) -> PersistOutcome:
        """Persist one thread's extraction result.

        Args:
            owner_id: Owner the insights belong to
            communication: Anchor communication (newest in the prompt window)
            result: Extraction result for the thread

        Returns:
            PersistOutcome with per-kind counts
        """
        outcome = PersistOutcome()

        for insight in result.insights:
            try:
                written = await self._store.upsert_structured_insight(
                    owner_id=owner_id,
                    communication_id=communication.id,
                    client_id=communication.client_id,
                    category=insight.category,
                    summary=insight.summary,
                    evidence=insight.evidence,
                    suggested_action=insight.suggested_action,
                    confidence=insight.confidence,
                    raw_output=result.raw_output,
                )
            except DatabaseError as e:
                outcome.failures += 1
                logger.error(
                    "insight_write_failed",
                    communication_id=communication.id,
                    category=insight.category,
                    error=str(e),
                )
                continue

            if written == "inserted":
                outcome.inserted += 1
            else:
                outcome.updated += 1

        if not result.insights and result.raw_output:
            try:
                await self._store.save_raw_insight(
                    owner_id=owner_id,
                    communication_id=communication.id,
                    client_id=communication.client_id,
                    raw_output=result.raw_output,
                )
                outcome.raw_written += 1
            except DatabaseError as e:
                outcome.failures += 1
                logger.error(
                    "raw_insight_write_failed",
                    communication_id=communication.id,
                    error=str(e),
                )

        return outcome
