# backend/src/wikigen/llm/__init__.py
"""LLM client abstraction."""

from wikigen.llm.client import (
    ContextCache,
    LLMAuthenticationError,
    LLMClient,
    LLMConnectionError,
    LLMError,
    LLMRateLimitError,
    LLMResponse,
    estimate_tokens,
)

__all__ = [
    "ContextCache",
    "LLMAuthenticationError",
    "LLMClient",
    "LLMConnectionError",
    "LLMError",
    "LLMRateLimitError",
    "LLMResponse",
    "estimate_tokens",
]
