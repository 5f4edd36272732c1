"""Custom exception types for ClientLens.

Error messages follow the same shape throughout the project:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance, where there is any)
"""

from enum import Enum


class ErrorCategory(str, Enum):
    """Closed set of failure categories reported by transport adapters.

    The retry executor consults this before falling back to matching
    error messages against patterns.
    """

    TRANSIENT = "transient"
    FATAL = "fatal"


class ClientLensError(Exception):
    """Base exception for all ClientLens errors."""

    pass


class ConfigValidationError(ClientLensError):
    """Raised when the config file fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(ClientLensError):
    """Raised when the config file cannot be loaded (file not found, YAML parse error)."""

    pass


class DatabaseError(ClientLensError):
    """Raised when SQLite operations fail."""

    pass


class LLMServiceError(ClientLensError):
    """Raised when a call to the language model service fails.

    Attributes:
        category: TRANSIENT for timeouts, connection failures, 429 and 5xx;
            FATAL for authentication, permission and request validation errors
        status_code: HTTP status code from the API (if available)
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.FATAL,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.category = category
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.category is ErrorCategory.TRANSIENT


class InsightGenerationError(ClientLensError):
    """Raised when insight extraction cannot reach the LLM service.

    Surfaced to the caller of the pipeline as a service-unavailable
    condition once the retry budget is spent, or immediately for
    non-retryable failures.

    Attributes:
        thread_id: Conversation thread being processed when the call failed
        retryable: Whether the underlying failure was transient
    """

    def __init__(self, message: str, thread_id: str | None = None, retryable: bool = True):
        super().__init__(message)
        self.thread_id = thread_id
        self.retryable = retryable


class FeedbackValidationError(ClientLensError):
    """Raised when a feedback value is not 'positive' or 'negative'."""

    pass


class FeedbackRejectedError(ClientLensError):
    """Raised when feedback targets an insight the owner does not have.

    Attributes:
        insight_id: The insight the feedback was submitted for
    """

    def __init__(self, message: str, insight_id: int | None = None):
        super().__init__(message)
        self.insight_id = insight_id


class SanitizationError(ClientLensError):
    """Raised when a sanitization step fails (e.g., regex timeout).

    This is a non-fatal error - processing continues with the partial result.
    Used for logging rather than halting execution.

    Attributes:
        step: Which sanitization step failed
        partial_result: The text sanitized up to the failure point
    """

    def __init__(self, message: str, step: str, partial_result: str):
        super().__init__(message)
        self.step = step
        self.partial_result = partial_result


class SourceError(ClientLensError):
    """Raised when a communication source cannot be read or is malformed."""

    pass
