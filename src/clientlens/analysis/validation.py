"""Schema validation for model-generated insights.

Generative output is unreliable, so each candidate insight is checked
independently against InsightCandidate. Over-long text fields are truncated
rather than rejected, and numeric-string confidences are coerced. Whatever
still fails is dropped with a warning; partial success is normal.

Usage:
    from clientlens.analysis.validation import validate_insights

    valid = validate_insights(json.loads(array_text))
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from clientlens.core.logging import get_logger

logger = get_logger(__name__)

InsightCategory = Literal["Risk", "Upsell", "Alignment", "Note"]

INSIGHT_CATEGORIES: tuple[str, ...] = ("Risk", "Upsell", "Alignment", "Note")

SUMMARY_LIMITS = (10, 500)
EVIDENCE_LIMITS = (5, 1000)
SUGGESTED_ACTION_LIMITS = (5, 500)

ELLIPSIS = "..."


def truncate_with_ellipsis(value: Any, max_length: int) -> Any:
    """Cut strings longer than max_length to max_length - 3 chars plus '...'."""
    if isinstance(value, str) and len(value) > max_length:
        return value[: max_length - len(ELLIPSIS)] + ELLIPSIS
    return value


class InsightCandidate(BaseModel):
    """A validated insight, ready to persist."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    category: InsightCategory
    summary: str = Field(min_length=SUMMARY_LIMITS[0], max_length=SUMMARY_LIMITS[1])
    evidence: str = Field(min_length=EVIDENCE_LIMITS[0], max_length=EVIDENCE_LIMITS[1])
    suggested_action: str = Field(
        min_length=SUGGESTED_ACTION_LIMITS[0],
        max_length=SUGGESTED_ACTION_LIMITS[1],
    )
    confidence: float = Field(ge=0.0, le=1.0, allow_inf_nan=False)

    @field_validator("summary", mode="before")
    @classmethod
    def truncate_summary(cls, v: Any) -> Any:
        return truncate_with_ellipsis(v, SUMMARY_LIMITS[1])

    @field_validator("evidence", mode="before")
    @classmethod
    def truncate_evidence(cls, v: Any) -> Any:
        return truncate_with_ellipsis(v, EVIDENCE_LIMITS[1])

    @field_validator("suggested_action", mode="before")
    @classmethod
    def truncate_suggested_action(cls, v: Any) -> Any:
        return truncate_with_ellipsis(v, SUGGESTED_ACTION_LIMITS[1])

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: Any) -> Any:
        """Accept numbers and numeric strings; reject booleans."""
        if isinstance(v, bool):
            raise ValueError("confidence must be a number, not a boolean")
        if isinstance(v, str):
            try:
                return float(v.strip())
            except ValueError as e:
                raise ValueError(f"confidence '{v}' is not numeric") from e
        return v


def validate_insight(raw: Any) -> InsightCandidate | None:
    """Validate one candidate insight.

    Args:
        raw: One element of the parsed model output

    Returns:
        InsightCandidate, or None if the candidate is unusable
    """
    if not isinstance(raw, dict):
        logger.warning("insight_dropped", reason="not an object", value_type=type(raw).__name__)
        return None

    try:
        return InsightCandidate.model_validate(raw)
    except ValidationError as e:
        logger.warning(
            "insight_dropped",
            reason="schema validation failed",
            fields=[".".join(str(loc) for loc in err["loc"]) for err in e.errors()],
            category=raw.get("category"),
        )
        return None


def validate_insights(raw_insights: list[Any]) -> list[InsightCandidate]:
    """Validate a list of candidates, keeping only the valid ones."""
    valid: list[InsightCandidate] = []
    for raw in raw_insights:
        candidate = validate_insight(raw)
        if candidate is not None:
            valid.append(candidate)
    return valid
