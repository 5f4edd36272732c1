"""Language model service adapter.

Usage:
    from clientlens.llm import LLMClient, build_anthropic_client

    llm = LLMClient(build_anthropic_client(config), config=config, store=store)
"""

from clientlens.llm.client import (
    TASK_ATTRIBUTION,
    TASK_INSIGHTS,
    LLMClient,
    build_anthropic_client,
    translate_error,
)

__all__ = [
    "LLMClient",
    "TASK_ATTRIBUTION",
    "TASK_INSIGHTS",
    "build_anthropic_client",
    "translate_error",
]
