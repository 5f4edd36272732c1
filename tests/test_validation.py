"""Tests for insight candidate validation."""

from typing import Any

import pytest

from clientlens.analysis.validation import (
    INSIGHT_CATEGORIES,
    truncate_with_ellipsis,
    validate_insight,
    validate_insights,
)


def _candidate(**overrides: Any) -> dict[str, Any]:
    data = {
        "category": "Risk",
        "summary": "Client expressing budget concerns",
        "evidence": "costs are getting too high",
        "suggested_action": "Schedule a budget call",
        "confidence": 0.85,
    }
    data.update(overrides)
    return data


class TestValidateInsight:
    def test_valid_candidate(self) -> None:
        insight = validate_insight(_candidate())
        assert insight is not None
        assert insight.category == "Risk"
        assert insight.confidence == 0.85

    @pytest.mark.parametrize("category", INSIGHT_CATEGORIES)
    def test_all_canonical_categories(self, category: str) -> None:
        assert validate_insight(_candidate(category=category)) is not None

    @pytest.mark.parametrize("category", ["Opportunity", "risk", "", None])
    def test_non_canonical_category_rejected(self, category: Any) -> None:
        assert validate_insight(_candidate(category=category)) is None

    @pytest.mark.parametrize(
        "confidence", [-0.1, 1.01, True, "high", None, float("nan"), float("inf"), "NaN"]
    )
    def test_invalid_confidence_rejected(self, confidence: Any) -> None:
        assert validate_insight(_candidate(confidence=confidence)) is None

    def test_numeric_string_confidence_coerced(self) -> None:
        insight = validate_insight(_candidate(confidence="0.7"))
        assert insight is not None
        assert insight.confidence == 0.7

    def test_integer_bounds_accepted(self) -> None:
        assert validate_insight(_candidate(confidence=0)) is not None
        assert validate_insight(_candidate(confidence=1)) is not None

    def test_short_fields_rejected(self) -> None:
        assert validate_insight(_candidate(summary="too short")) is None
        assert validate_insight(_candidate(evidence="tiny")) is None
        assert validate_insight(_candidate(suggested_action="do")) is None

    def test_missing_field_rejected(self) -> None:
        data = _candidate()
        del data["evidence"]
        assert validate_insight(data) is None

    def test_overlong_fields_truncated(self) -> None:
        insight = validate_insight(
            _candidate(summary="s" * 600, evidence="e" * 1500, suggested_action="a" * 700)
        )
        assert insight is not None
        assert len(insight.summary) == 500
        assert insight.summary.endswith("...")
        assert len(insight.evidence) == 1000
        assert len(insight.suggested_action) == 500

    def test_non_object_rejected(self) -> None:
        assert validate_insight("Risk: budget") is None
        assert validate_insight(["Risk"]) is None


class TestValidateInsights:
    def test_keeps_only_valid(self) -> None:
        raw = [_candidate(), _candidate(category="Other"), 42, _candidate(category="Note")]
        valid = validate_insights(raw)
        assert [i.category for i in valid] == ["Risk", "Note"]

    def test_empty_list(self) -> None:
        assert validate_insights([]) == []


def test_truncate_with_ellipsis_leaves_short_values() -> None:
    assert truncate_with_ellipsis("short", 10) == "short"
    assert truncate_with_ellipsis("abcdefghijk", 10) == "abcdefg..."
    assert truncate_with_ellipsis(5, 1) == 5
