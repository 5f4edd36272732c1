"""Insight extraction for one conversation thread.

Extraction is a two-stage pipeline:

1. Text -> candidates: the JSON array is sliced from the first '[' to the
   last ']' of the model output and decoded. A lone object is treated as a
   one-element array. Anything unparsable leaves zero candidates.
2. Candidates -> insights: each candidate is validated independently
   (see analysis.validation); invalid ones are dropped.

The raw model text is always carried in the result so the caller can
persist it when no structured insight survives.

Usage:
    from clientlens.analysis.extraction import InsightExtractor

    extractor = InsightExtractor(llm_client, config)
    result = await extractor.extract(messages)
    for insight in result.insights:
        ...
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from clientlens.analysis.prompts import InsightPromptBuilder, ThreadMessage
from clientlens.analysis.sanitizer import ContentSanitizer
from clientlens.analysis.validation import InsightCandidate, validate_insights
from clientlens.core.logging import get_logger
from clientlens.llm.client import TASK_INSIGHTS

if TYPE_CHECKING:
    from clientlens.config_schema import AppConfig
    from clientlens.llm.client import LLMClient

logger = get_logger(__name__)


@dataclass
class ExtractionResult:
    """Validated insights plus the model text they came from.

    Attributes:
        insights: Candidates that passed validation
        raw_output: Unmodified model text ("" if the model returned none)
        candidates: Number of elements decoded from the model output
        dropped: Number of decoded elements rejected by validation
    """

    insights: list[InsightCandidate] = field(default_factory=list)
    raw_output: str = ""
    candidates: int = 0
    dropped: int = 0


def parse_insight_response(text: str) -> list[Any]:
    """Decode the candidate array from model output.

    Args:
        text: Raw model output

    Returns:
        Decoded candidates (possibly empty); never raises
    """
    if not text:
        return []

    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end <= start:
        logger.warning(
            "insight_response_unparsable",
            reason="no JSON array found",
            preview=text[:500],
        )
        return []

    fragment = text[start : end + 1]
    try:
        parsed = json.loads(fragment)
    except json.JSONDecodeError as e:
        logger.warning(
            "insight_response_unparsable",
            reason=f"invalid JSON: {e}",
            preview=fragment[:500],
        )
        return []

    if isinstance(parsed, dict):
        return [parsed]
    if isinstance(parsed, list):
        return parsed

    logger.warning(
        "insight_response_unparsable",
        reason=f"expected array, got {type(parsed).__name__}",
        preview=fragment[:500],
    )
    return []


def interpret_response(text: str) -> ExtractionResult:
    """Run both extraction stages over model text."""
    raw = parse_insight_response(text)
    insights = validate_insights(raw)
    return ExtractionResult(
        insights=insights,
        raw_output=text,
        candidates=len(raw),
        dropped=len(raw) - len(insights),
    )


class InsightExtractor:
    """Builds the thread prompt, calls the model, and interprets the answer.

    Attributes:
        _llm: LLM client (retry-wrapped)
        _max_messages: Messages of a thread included in the prompt
        _prompts: Prompt builder bound to the LLM sanitizer profile
    """

    def __init__(self, llm_client: LLMClient, config: AppConfig):
        self._llm = llm_client
        self._max_messages = config.pipeline.max_thread_messages
        self._model = config.models.insights
        self._max_tokens = config.llm.insights_max_tokens
        self._prompts = InsightPromptBuilder(ContentSanitizer.from_config(config.sanitizer))

    def cap(self, messages: list[ThreadMessage]) -> list[ThreadMessage]:
        """The prompt window: the first max_thread_messages of the thread."""
        return messages[: self._max_messages]

    async def extract(
        self,
        messages: list[ThreadMessage],
        communication_id: str | None = None,
    ) -> ExtractionResult:
        """Extract insights from one thread.

        Args:
            messages: Thread messages in prompt order
            communication_id: Anchor communication, for request-log correlation

        Returns:
            ExtractionResult (empty if messages is empty)

        Raises:
            LLMServiceError: Model unreachable after retries, or fatal API error
        """
        window = self.cap(messages)
        if not window:
            return ExtractionResult()

        prompt = self._prompts.build(window)
        text = await self._llm.complete(
            prompt,
            task_type=TASK_INSIGHTS,
            model=self._model,
            max_tokens=self._max_tokens,
            communication_id=communication_id,
        )

        result = interpret_response(text)
        logger.debug(
            "insights_extracted",
            messages=len(window),
            candidates=result.candidates,
            valid=len(result.insights),
            dropped=result.dropped,
        )
        return result
