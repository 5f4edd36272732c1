"""Exponential backoff with jitter for fallible async operations.

Wraps any zero-argument coroutine factory. Failures are classified as
retryable or fatal by classify_error(); fatal errors propagate immediately,
retryable ones are re-attempted until the attempt budget is spent.

Classification order:
1. Explicit retryable_patterns, if given, are the only test applied
2. A structured ``category`` attribute set by the transport adapter
   (see ErrorCategory in core.errors)
3. The default pattern set, matched case-insensitively against the
   error message and the exception class name

Usage:
    from clientlens.core.retry import RetryOptions, retry_async

    text = await retry_async(
        lambda: llm.complete_once(prompt),
        RetryOptions(max_attempts=5, initial_delay=0.5),
    )
"""

from __future__ import annotations

import asyncio
import random
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from clientlens.core.errors import ErrorCategory
from clientlens.core.logging import get_logger

if TYPE_CHECKING:
    from clientlens.config_schema import RetryConfig

logger = get_logger(__name__)

T = TypeVar("T")

# Fraction of the computed delay added as random jitter
JITTER_FRACTION = 0.1

DEFAULT_RETRYABLE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"timeout", re.IGNORECASE),
    re.compile(r"timed out", re.IGNORECASE),
    re.compile(r"ETIMEDOUT", re.IGNORECASE),
    re.compile(r"ECONNRESET", re.IGNORECASE),
    re.compile(r"connection reset", re.IGNORECASE),
    re.compile(r"ENOTFOUND", re.IGNORECASE),
    re.compile(r"rate limit", re.IGNORECASE),
    re.compile(r"\b429\b"),
    re.compile(r"\b50[0234]\b"),
    re.compile(r"\b529\b"),
    re.compile(r"overloaded", re.IGNORECASE),
    re.compile(r"network", re.IGNORECASE),
    re.compile(r"socket hang up", re.IGNORECASE),
)

RetryPattern = str | re.Pattern[str]
RetryObserver = Callable[[BaseException, int], None]


@dataclass(frozen=True, slots=True)
class RetryOptions:
    """Retry policy for retry_async().

    Attributes:
        max_attempts: Total invocations allowed, including the first
        initial_delay: Delay in seconds before the second attempt
        max_delay: Upper bound in seconds for the computed delay (before jitter)
        backoff_multiplier: Factor applied to the delay after each attempt
        retryable_patterns: If set, replaces the default classification;
            strings match as substrings, compiled patterns via search()
        on_retry: Observer called with (error, attempt) before each sleep
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_patterns: Sequence[RetryPattern] | None = None
    on_retry: RetryObserver | None = None

    @classmethod
    def from_config(
        cls,
        config: RetryConfig,
        on_retry: RetryObserver | None = None,
    ) -> RetryOptions:
        """Build options from the ``retry`` section of the app config."""
        return cls(
            max_attempts=config.max_attempts,
            initial_delay=config.initial_delay_seconds,
            max_delay=config.max_delay_seconds,
            backoff_multiplier=config.backoff_multiplier,
            on_retry=on_retry,
        )


def _matches(pattern: RetryPattern, text: str) -> bool:
    if isinstance(pattern, str):
        return pattern in text
    return pattern.search(text) is not None


def classify_error(
    error: BaseException,
    retryable_patterns: Sequence[RetryPattern] | None = None,
) -> ErrorCategory:
    """Decide whether an error is worth retrying.

    Args:
        error: The exception raised by the wrapped operation
        retryable_patterns: Optional explicit patterns (see RetryOptions)

    Returns:
        ErrorCategory.TRANSIENT if the error should be retried,
        ErrorCategory.FATAL otherwise
    """
    message = str(error)
    name = type(error).__name__

    if retryable_patterns:
        hit = any(_matches(p, message) or _matches(p, name) for p in retryable_patterns)
        return ErrorCategory.TRANSIENT if hit else ErrorCategory.FATAL

    category = getattr(error, "category", None)
    if isinstance(category, ErrorCategory):
        return category

    if isinstance(error, asyncio.TimeoutError | ConnectionError):
        return ErrorCategory.TRANSIENT

    hit = any(_matches(p, message) or _matches(p, name) for p in DEFAULT_RETRYABLE_PATTERNS)
    return ErrorCategory.TRANSIENT if hit else ErrorCategory.FATAL


def calculate_delay(attempt: int, options: RetryOptions) -> float:
    """Compute the backoff delay after a failed attempt.

    Args:
        attempt: 1-based number of the attempt that just failed
        options: Retry policy

    Returns:
        Delay in seconds, capped at max_delay plus up to 10% jitter
    """
    exponential = options.initial_delay * options.backoff_multiplier ** (attempt - 1)
    capped = min(exponential, options.max_delay)
    return capped + random.random() * capped * JITTER_FRACTION


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
) -> T:
    """Run an async operation, retrying transient failures with backoff.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per call
        options: Retry policy (defaults to RetryOptions())

    Returns:
        The operation's result

    Raises:
        The last error raised by the operation, once it is classified as
        fatal or the attempt budget is exhausted
    """
    opts = options or RetryOptions()
    max_attempts = max(1, opts.max_attempts)

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if classify_error(e, opts.retryable_patterns) is ErrorCategory.FATAL:
                logger.warning(
                    "retry_non_retryable_error",
                    error=str(e),
                    error_type=type(e).__name__,
                    attempt=attempt,
                )
                raise

            if attempt == max_attempts:
                logger.error(
                    "retry_attempts_exhausted",
                    error=str(e),
                    error_type=type(e).__name__,
                    max_attempts=max_attempts,
                )
                raise

            delay = calculate_delay(attempt, opts)
            logger.warning(
                "retry_scheduled",
                error=str(e),
                attempt=attempt,
                next_attempt=attempt + 1,
                max_attempts=max_attempts,
                delay_seconds=round(delay, 3),
            )

            if opts.on_retry is not None:
                opts.on_retry(e, attempt)

            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError("retry_async exited without a result")


def create_retryable(
    options: RetryOptions | None = None,
) -> Callable[[Callable[[], Awaitable[T]]], Awaitable[T]]:
    """Create a retry wrapper with preset options.

    Example:
        with_retry = create_retryable(RetryOptions(max_attempts=5))
        result = await with_retry(lambda: client.fetch())
    """

    def wrapper(operation: Callable[[], Awaitable[T]]) -> Awaitable[T]:
        return retry_async(operation, options)

    return wrapper
