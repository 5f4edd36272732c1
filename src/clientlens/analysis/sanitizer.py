"""Content sanitization for stored communications and model prompts.

Two profiles share one core transform:

- Storage profile (sanitize_content): strips angle brackets, ``javascript:``
  protocol strings, inline event-handler attributes and null bytes, then
  bounds the text to a large ceiling.
- LLM profile (sanitize_for_llm): the same, plus code fence markers and
  role-marker tokens (SYSTEM:, USER:, [INST] ...) that could be used for
  prompt injection, bounded to a much smaller ceiling.

Both are pure str -> str transforms and never raise. Applying either one to
its own output returns the same text.

CRITICAL SECURITY NOTE:
All regex operations use the `regex` library with a timeout so that hostile
email content cannot stall the pipeline (ReDoS).

Usage:
    from clientlens.analysis.sanitizer import sanitize_content, sanitize_for_llm

    body = sanitize_content(raw_body)
    prompt_body = sanitize_for_llm(body)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import regex

from clientlens.core.errors import SanitizationError
from clientlens.core.logging import get_logger

if TYPE_CHECKING:
    from clientlens.config_schema import SanitizerConfig

logger = get_logger(__name__)

DEFAULT_CONTENT_MAX_LENGTH = 50000
DEFAULT_LLM_MAX_LENGTH = 10000
DEFAULT_TEXT_MAX_LENGTH = 1000

# Regex timeout in seconds (CRITICAL: all operations MUST use this)
REGEX_TIMEOUT = 1.0


# =============================================================================
# Compiled Regex Patterns
# Note: timeout is passed at match time (sub), not compile time
# =============================================================================

ANGLE_BRACKETS = regex.compile(r"[<>]")
JAVASCRIPT_PROTOCOL = regex.compile(r"javascript:", regex.IGNORECASE)
EVENT_HANDLER = regex.compile(r"\bon\w+\s*=", regex.IGNORECASE)
NULL_BYTES = regex.compile(r"\x00")

CORE_PATTERNS: list[tuple[str, regex.Pattern]] = [
    ("angle_brackets", ANGLE_BRACKETS),
    ("javascript_protocol", JAVASCRIPT_PROTOCOL),
    ("event_handlers", EVENT_HANDLER),
    ("null_bytes", NULL_BYTES),
]

# Prompt-injection surface, stripped only for model input
CODE_FENCE = regex.compile(r"```")
INSTRUCTION_TOKENS = regex.compile(r"\[/?INST\]", regex.IGNORECASE)
ROLE_MARKERS = regex.compile(r"\b(?:SYSTEM|USER|ASSISTANT|Human|AI)\s*:", regex.IGNORECASE)

LLM_PATTERNS: list[tuple[str, regex.Pattern]] = [
    ("code_fences", CODE_FENCE),
    ("instruction_tokens", INSTRUCTION_TOKENS),
    ("role_markers", ROLE_MARKERS),
]


def _safe_sub(step: str, pattern: regex.Pattern, text: str) -> str:
    """Remove all matches of a pattern, raising SanitizationError on timeout."""
    try:
        return pattern.sub("", text, timeout=REGEX_TIMEOUT)
    except TimeoutError as e:
        raise SanitizationError(
            f"Regex timeout in sanitization step '{step}'",
            step=step,
            partial_result=text,
        ) from e


def _strip_patterns(text: str, patterns: list[tuple[str, regex.Pattern]]) -> str:
    """Apply each pattern until the text stops changing.

    Removing one match can join its neighbours into a new match
    (``javajavascript:script:``), so a single pass is not enough for
    the output to be stable.
    """
    current = text
    for _ in range(5):
        previous = current
        for step, pattern in patterns:
            try:
                current = _safe_sub(step, pattern, current)
            except SanitizationError as e:
                logger.warning("sanitizer_step_timeout", step=e.step, length=len(current))
                current = e.partial_result
        if current == previous:
            break
    return current


def _bound(text: str, max_length: int) -> str:
    """Trim surrounding whitespace and cut to max_length."""
    bounded = text.strip()[:max_length]
    return bounded.rstrip()


def sanitize_content(text: str | None, max_length: int = DEFAULT_CONTENT_MAX_LENGTH) -> str:
    """Sanitize communication content for storage.

    Args:
        text: Raw text (None is treated as empty)
        max_length: Length ceiling for the result

    Returns:
        Sanitized text
    """
    if not text:
        return ""
    return _bound(_strip_patterns(text, CORE_PATTERNS), max_length)


def sanitize_for_llm(text: str | None, max_length: int = DEFAULT_LLM_MAX_LENGTH) -> str:
    """Sanitize text before it is interpolated into a model prompt.

    Args:
        text: Raw or storage-sanitized text (None is treated as empty)
        max_length: Length ceiling for the result

    Returns:
        Sanitized text with injection-prone markers removed
    """
    if not text:
        return ""
    return _bound(_strip_patterns(text, CORE_PATTERNS + LLM_PATTERNS), max_length)


def sanitize_text(text: str | None, max_length: int = DEFAULT_TEXT_MAX_LENGTH) -> str:
    """Sanitize a short single-line field such as a subject."""
    return sanitize_content(text, max_length=max_length)


class ContentSanitizer:
    """Sanitizer bound to configured length ceilings.

    Attributes:
        content_max_length: Ceiling for stored bodies
        llm_max_length: Ceiling for any field placed in a prompt
    """

    def __init__(
        self,
        content_max_length: int = DEFAULT_CONTENT_MAX_LENGTH,
        llm_max_length: int = DEFAULT_LLM_MAX_LENGTH,
    ):
        self.content_max_length = content_max_length
        self.llm_max_length = llm_max_length

    @classmethod
    def from_config(cls, config: SanitizerConfig) -> ContentSanitizer:
        return cls(
            content_max_length=config.content_max_length,
            llm_max_length=config.llm_max_length,
        )

    def for_storage(self, text: str | None) -> str:
        return sanitize_content(text, max_length=self.content_max_length)

    def for_llm(self, text: str | None, max_length: int | None = None) -> str:
        limit = self.llm_max_length if max_length is None else min(max_length, self.llm_max_length)
        return sanitize_for_llm(text, max_length=limit)
