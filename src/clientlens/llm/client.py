"""Claude adapter for free-form text completions.

Sends one user prompt with an output-token bound and returns the model's
text. Every call goes through the retry executor; SDK exceptions are
translated into LLMServiceError carrying a structured ErrorCategory so the
executor does not have to guess from message text.

Error handling strategy:
- Transient errors (connection, timeout, 429, 5xx): retried with backoff
  up to config.retry.max_attempts, then the last LLMServiceError propagates
- Other status errors (401, 403, 400, 404, 422): raised immediately
- The SDK's own retry loop is disabled (max_retries=0) so the attempt
  budget is owned by one place

Usage:
    from clientlens.llm.client import LLMClient, build_anthropic_client

    llm = LLMClient(build_anthropic_client(config), store=store, config=config)
    text = await llm.complete(prompt, task_type="insights")
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import anthropic

from clientlens.core.errors import ErrorCategory, LLMServiceError
from clientlens.core.logging import get_logger
from clientlens.core.retry import RetryOptions, retry_async

if TYPE_CHECKING:
    from clientlens.config_schema import AppConfig
    from clientlens.db.store import DatabaseStore

logger = get_logger(__name__)

TASK_INSIGHTS = "insights"
TASK_ATTRIBUTION = "attribution"


def build_anthropic_client(config: AppConfig) -> anthropic.AsyncAnthropic:
    """Create the async Anthropic client (reads ANTHROPIC_API_KEY from the environment)."""
    return anthropic.AsyncAnthropic(max_retries=0, timeout=config.llm.timeout_seconds)


def translate_error(error: Exception) -> LLMServiceError:
    """Map an Anthropic SDK exception onto LLMServiceError.

    Args:
        error: Exception raised by messages.create()

    Returns:
        LLMServiceError with category and status code filled in
    """
    if isinstance(error, anthropic.APITimeoutError):
        return LLMServiceError(f"LLM request timed out: {error}", ErrorCategory.TRANSIENT)

    if isinstance(error, anthropic.APIConnectionError):
        return LLMServiceError(f"LLM connection error: {error}", ErrorCategory.TRANSIENT)

    if isinstance(error, anthropic.RateLimitError):
        return LLMServiceError(
            f"LLM rate limit exceeded (429): {error.message}",
            ErrorCategory.TRANSIENT,
            status_code=429,
        )

    if isinstance(error, anthropic.APIStatusError):
        category = ErrorCategory.TRANSIENT if error.status_code >= 500 else ErrorCategory.FATAL
        return LLMServiceError(
            f"LLM API status error {error.status_code}: {error.message}",
            category,
            status_code=error.status_code,
        )

    return LLMServiceError(f"Unexpected LLM client error: {error}", ErrorCategory.FATAL)


class LLMClient:
    """Retry-hardened text completion over the Anthropic Messages API.

    Attributes:
        _client: Anthropic async client (SDK retries disabled)
        _store: Database store for request logging (optional)
        _config: Application configuration
    """

    def __init__(
        self,
        anthropic_client: anthropic.AsyncAnthropic,
        config: AppConfig,
        store: DatabaseStore | None = None,
    ):
        self._client = anthropic_client
        self._config = config
        self._store = store

    async def complete(
        self,
        prompt: str,
        *,
        task_type: str,
        model: str | None = None,
        max_tokens: int | None = None,
        communication_id: str | None = None,
    ) -> str:
        """Send a prompt and return the model's text.

        Args:
            prompt: The full user prompt
            task_type: 'insights' or 'attribution' (selects defaults, tags logs)
            model: Override model (defaults per task type from config)
            max_tokens: Override output bound (defaults per task type)
            communication_id: Communication the call is about, for log correlation

        Returns:
            Concatenated text content of the response ("" if the model
            returned no text blocks)

        Raises:
            LLMServiceError: Non-retryable failure, or transient failure after
                all attempts
        """
        model_name = model or self._default_model(task_type)
        token_bound = max_tokens or self._default_max_tokens(task_type)

        def on_retry(error: BaseException, attempt: int) -> None:
            logger.info(
                "llm_call_retry",
                task_type=task_type,
                attempt=attempt,
                error=str(error),
            )

        options = RetryOptions.from_config(self._config.retry, on_retry=on_retry)
        return await retry_async(
            lambda: self._create_once(prompt, task_type, model_name, token_bound, communication_id),
            options,
        )

    async def _create_once(
        self,
        prompt: str,
        task_type: str,
        model: str,
        max_tokens: int,
        communication_id: str | None,
    ) -> str:
        messages = [{"role": "user", "content": prompt}]
        start_time = time.monotonic()

        try:
            response = await self._client.messages.create(
                model=model,
                max_tokens=max_tokens,
                messages=messages,
            )
        except anthropic.AnthropicError as e:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            service_error = translate_error(e)
            logger.warning(
                "llm_call_failed",
                task_type=task_type,
                category=service_error.category.value,
                status_code=service_error.status_code,
                error=str(e),
            )
            await self._log_request(
                task_type=task_type,
                model=model,
                messages=messages,
                response=None,
                duration_ms=duration_ms,
                communication_id=communication_id,
                error=str(service_error),
            )
            raise service_error from e

        duration_ms = int((time.monotonic() - start_time) * 1000)
        text = "".join(block.text for block in response.content if block.type == "text")

        if not text:
            logger.warning(
                "llm_no_text_content",
                task_type=task_type,
                block_types=[block.type for block in response.content],
            )

        await self._log_request(
            task_type=task_type,
            model=model,
            messages=messages,
            response=response,
            duration_ms=duration_ms,
            communication_id=communication_id,
        )
        return text

    def _default_model(self, task_type: str) -> str:
        if task_type == TASK_ATTRIBUTION:
            return self._config.models.attribution
        return self._config.models.insights

    def _default_max_tokens(self, task_type: str) -> int:
        if task_type == TASK_ATTRIBUTION:
            return self._config.llm.attribution_max_tokens
        return self._config.llm.insights_max_tokens

    async def _log_request(
        self,
        task_type: str,
        model: str,
        messages: list[dict[str, Any]],
        response: Any,
        duration_ms: int,
        communication_id: str | None = None,
        error: str | None = None,
    ) -> None:
        """Log an LLM request to the database.

        Logging failures never block the pipeline.
        """
        if self._store is None or not self._config.llm_logging.enabled:
            return

        try:
            prompt_data: dict[str, Any] = {}
            if self._config.llm_logging.log_prompts:
                prompt_data["messages"] = messages

            response_data: dict[str, Any] | None = None
            input_tokens: int | None = None
            output_tokens: int | None = None

            if response is not None:
                usage = getattr(response, "usage", None)
                if usage is not None:
                    input_tokens = usage.input_tokens
                    output_tokens = usage.output_tokens
                if self._config.llm_logging.log_responses:
                    response_data = {
                        "id": response.id,
                        "model": response.model,
                        "stop_reason": response.stop_reason,
                        "content": [_content_block_to_dict(block) for block in response.content],
                    }

            await self._store.log_llm_request(
                task_type=task_type,
                model=model,
                prompt=prompt_data,
                response=response_data,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                duration_ms=duration_ms,
                communication_id=communication_id,
                error=error,
            )
        except Exception as e:
            logger.warning(
                "llm_log_failed",
                error=str(e),
                task_type=task_type,
            )


def _content_block_to_dict(block: Any) -> dict[str, Any]:
    """Convert an Anthropic content block to a serializable dict."""
    if block.type == "text":
        return {"type": "text", "text": block.text}
    return {"type": block.type}
