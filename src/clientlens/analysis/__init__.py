"""Communication analysis components.

This package provides the per-communication and per-thread analysis steps:
- Content sanitizer for storage and model prompts
- Automated-message classifier
- Three-tier client attribution resolver
- Insight prompt builder, extractor and validation
"""

from clientlens.analysis.attribution import (
    NO_MATCH,
    AttributionResult,
    ClientAttributionResolver,
    extract_domain,
    find_direct_match,
    find_domain_match,
    parse_attribution_response,
)
from clientlens.analysis.automated import (
    AutomatedMatch,
    AutomatedMessageClassifier,
    is_automated_message,
)
from clientlens.analysis.extraction import (
    ExtractionResult,
    InsightExtractor,
    parse_insight_response,
)
from clientlens.analysis.prompts import ThreadMessage, build_attribution_prompt, group_by_client
from clientlens.analysis.sanitizer import (
    ContentSanitizer,
    sanitize_content,
    sanitize_for_llm,
    sanitize_text,
)
from clientlens.analysis.validation import (
    INSIGHT_CATEGORIES,
    InsightCandidate,
    validate_insight,
    validate_insights,
)

__all__ = [
    # Attribution
    "NO_MATCH",
    "AttributionResult",
    "ClientAttributionResolver",
    "extract_domain",
    "find_direct_match",
    "find_domain_match",
    "parse_attribution_response",
    # Automated filter
    "AutomatedMatch",
    "AutomatedMessageClassifier",
    "is_automated_message",
    # Extraction
    "ExtractionResult",
    "InsightExtractor",
    "parse_insight_response",
    "ThreadMessage",
    "build_attribution_prompt",
    "group_by_client",
    # Sanitizer
    "ContentSanitizer",
    "sanitize_content",
    "sanitize_for_llm",
    "sanitize_text",
    # Validation
    "INSIGHT_CATEGORIES",
    "InsightCandidate",
    "validate_insight",
    "validate_insights",
]
