# backend/src/wikigen/llm/client.py
"""LiteLLM-based LLM client with context-cache registration."""

import json
import logging
import math
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from litellm import acompletion
from litellm.exceptions import (
    APIConnectionError,
    APIError,
    AuthenticationError,
    RateLimitError,
)

from wikigen.config import ConfigError, load_settings
from wikigen.constants.llm import (
    CHARS_PER_TOKEN,
    CONTEXT_CACHE_SYSTEM_INSTRUCTION,
    CONTEXT_CACHE_TTL_SECONDS,
    DEFAULT_TEMPERATURE,
    INLINE_CACHE_PREFIX,
    JSON_TEMPERATURE,
    MAX_TOKENS,
)

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Base exception for LLM client errors."""

    pass


class LLMConnectionError(LLMError):
    """Raised when unable to connect to the LLM provider."""

    pass


class LLMAuthenticationError(LLMError):
    """Raised when authentication with the LLM provider fails."""

    pass


class LLMRateLimitError(LLMError):
    """Raised when rate limited by the LLM provider.

    Attributes:
        status_code: HTTP status reported by the provider (429 when known).
        retry_after: Seconds the provider asked us to wait, if it said so.
    """

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.status_code = 429
        self.retry_after = retry_after


def estimate_tokens(text: str) -> int:
    """Rough token count for text the provider didn't meter."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass
class LLMResponse:
    """Completion text plus token accounting for one call.

    Attributes:
        text: Generated text.
        input_tokens: Prompt tokens (provider-reported or estimated).
        output_tokens: Completion tokens (provider-reported or estimated).
        cached_tokens: Prompt tokens served from a context cache, if reported.
    """

    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0


@dataclass
class ContextCache:
    """A registered context blob.

    Attributes:
        name: Opaque handle to pass as ``cached_content`` on later calls.
        token_count: Tokens held by the cache (provider-reported or estimated).
        expires_at: When the provider (or this client) drops the cache.
    """

    name: str
    token_count: int
    expires_at: datetime


@dataclass
class _InlineCache:
    system_instruction: str
    content: str
    expires_at: datetime


class LLMClient:
    """Unified LLM client supporting multiple providers via LiteLLM."""

    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str | None = None,
        endpoint: str | None = None,
        log_path: Path | None = None,
        genai_client: "genai.Client | None" = None,
    ):
        """Initialize LLM client.

        Args:
            provider: LLM provider (openai, anthropic, google, ollama).
            model: Model name.
            api_key: Optional API key (uses env var if not provided).
            endpoint: Optional custom endpoint (for Ollama).
            log_path: Optional path to JSONL log file for query logging.
            genai_client: Optional google-genai client used for cache
                registration when the provider is google.
        """
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint
        self.log_path = log_path
        self._genai_client = genai_client
        self._inline_caches: dict[str, _InlineCache] = {}

    def _log_query(
        self,
        system_prompt: str | None,
        prompt: str,
        temperature: float,
        max_tokens: int,
        response: str | None,
        duration_ms: int,
        error: str | None,
        error_details: dict | None = None,
        cached_content: str | None = None,
    ) -> None:
        """Log a query to the JSONL log file.

        Args:
            system_prompt: System prompt used.
            prompt: User prompt.
            temperature: Temperature setting.
            max_tokens: Max tokens setting.
            response: Response text (None if error).
            duration_ms: Request duration in milliseconds.
            error: Error message (None if success).
            error_details: Optional dict with status_code, headers, etc.
            cached_content: Context cache handle the call referenced, if any.
        """
        if not self.log_path:
            return

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "provider": self.provider,
            "model": self.model,
            "request": {
                "system_prompt": system_prompt,
                "prompt": prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "cached_content": cached_content,
            },
            "response": response,
            "duration_ms": duration_ms,
            "error": error,
        }

        if error_details:
            entry["error_details"] = error_details

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            # Don't let logging failures break the application
            logger.debug(f"Could not write LLM query log: {e}")

    def _extract_error_details(self, e: Exception) -> dict | None:
        """Extract HTTP details from LiteLLM exceptions.

        Args:
            e: The exception to extract details from.

        Returns:
            Dict with status_code, headers, and provider info if available.
        """
        details: dict = {}

        if hasattr(e, "status_code"):
            details["status_code"] = e.status_code

        if getattr(e, "response", None) is not None:
            resp = e.response
            if hasattr(resp, "status_code"):
                details["status_code"] = resp.status_code
            if hasattr(resp, "headers"):
                try:
                    headers = dict(resp.headers)
                except (TypeError, ValueError):
                    headers = {}
                relevant_headers = {
                    k: v
                    for k, v in headers.items()
                    if k.lower()
                    in (
                        "x-ratelimit-limit-requests",
                        "x-ratelimit-limit-tokens",
                        "x-ratelimit-remaining-requests",
                        "x-ratelimit-remaining-tokens",
                        "x-ratelimit-reset-requests",
                        "x-ratelimit-reset-tokens",
                        "retry-after",
                        "x-request-id",
                    )
                }
                if relevant_headers:
                    details["response_headers"] = relevant_headers

        if hasattr(e, "llm_provider"):
            details["llm_provider"] = e.llm_provider

        if hasattr(e, "message"):
            details["message"] = str(e.message)

        return details if details else None

    def _retry_after(self, details: dict | None) -> float | None:
        """Read a numeric retry-after header out of extracted error details."""
        if not details:
            return None
        headers = details.get("response_headers", {})
        for key, value in headers.items():
            if key.lower() == "retry-after":
                try:
                    return float(value)
                except (TypeError, ValueError):
                    return None
        return None

    def _get_model_string(self) -> str:
        """Get LiteLLM model string.

        Returns:
            Model string in provider/model format.
        """
        if self.provider == "openai":
            return self.model  # OpenAI is default
        elif self.provider == "google":
            return f"gemini/{self.model}"
        else:
            return f"{self.provider}/{self.model}"

    def _resolve_defaults(
        self, temperature: float | None, max_tokens: int | None
    ) -> tuple[float, int]:
        if temperature is None or max_tokens is None:
            try:
                settings = load_settings()
                if temperature is None:
                    temperature = settings.llm.default_temperature
                if max_tokens is None:
                    max_tokens = settings.llm.max_tokens
            except (ConfigError, OSError):
                # Settings not available (e.g., broken config file in tests)
                if temperature is None:
                    temperature = DEFAULT_TEMPERATURE
                if max_tokens is None:
                    max_tokens = MAX_TOKENS
        return temperature, max_tokens

    def _get_inline_cache(self, name: str) -> _InlineCache:
        entry = self._inline_caches.get(name)
        if entry is None:
            raise LLMError(f"Unknown context cache: {name}")
        if entry.expires_at <= datetime.now(timezone.utc):
            del self._inline_caches[name]
            raise LLMError(f"Context cache expired: {name}")
        return entry

    def _prune_inline_caches(self) -> None:
        now = datetime.now(timezone.utc)
        expired = [name for name, entry in self._inline_caches.items() if entry.expires_at <= now]
        for name in expired:
            del self._inline_caches[name]
        if expired:
            logger.debug(f"Dropped {len(expired)} expired inline context caches")

    def _build_messages(
        self,
        prompt: str,
        system_prompt: str | None,
        cached_content: str | None,
    ) -> tuple[list[dict], dict]:
        """Build the message list and any extra LiteLLM kwargs for a call."""
        messages: list[dict] = []
        extra: dict = {}

        if cached_content and cached_content.startswith(INLINE_CACHE_PREFIX):
            cache = self._get_inline_cache(cached_content)
            system_parts = [cache.system_instruction, cache.content]
            if system_prompt:
                system_parts.append(system_prompt)
            messages.append({"role": "system", "content": "\n\n".join(system_parts)})
        elif cached_content:
            # Gemini rejects a system instruction alongside cached content, so
            # the instruction travels in the user turn instead.
            extra["cached_content"] = cached_content
            if system_prompt:
                prompt = f"SYSTEM INSTRUCTIONS: {system_prompt}\n\n{prompt}"
        elif system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        messages.append({"role": "user", "content": prompt})
        return messages, extra

    def _usage_from_response(self, response, messages: list[dict], text: str) -> LLMResponse:
        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", None)
        output_tokens = getattr(usage, "completion_tokens", None)
        details = getattr(usage, "prompt_tokens_details", None)
        cached_tokens = getattr(details, "cached_tokens", None)

        if not isinstance(input_tokens, int):
            input_tokens = sum(estimate_tokens(str(m["content"])) for m in messages)
        if not isinstance(output_tokens, int):
            output_tokens = estimate_tokens(text)
        if not isinstance(cached_tokens, int):
            cached_tokens = 0

        return LLMResponse(
            text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cached_tokens=cached_tokens,
        )

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        cached_content: str | None = None,
    ) -> LLMResponse:
        """Generate a completion and report token usage.

        Args:
            prompt: User prompt.
            system_prompt: Optional system prompt.
            temperature: Sampling temperature.
            max_tokens: Maximum response tokens.
            cached_content: Optional context cache handle from
                create_context_cache().

        Returns:
            LLMResponse with the text and token accounting.

        Raises:
            LLMAuthenticationError: Credentials were rejected.
            LLMRateLimitError: The provider rate limited the call.
            LLMConnectionError: The provider could not be reached.
            LLMError: Any other provider failure.
        """
        temperature, max_tokens = self._resolve_defaults(temperature, max_tokens)
        messages, extra = self._build_messages(prompt, system_prompt, cached_content)

        kwargs = {
            "model": self._get_model_string(),
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            **extra,
        }

        if self.api_key:
            kwargs["api_key"] = self.api_key

        if self.endpoint and self.provider == "ollama":
            kwargs["api_base"] = self.endpoint

        start_time = time.perf_counter()

        def log_failure(e: Exception, details: dict | None) -> None:
            self._log_query(
                system_prompt,
                prompt,
                temperature,
                max_tokens,
                response=None,
                duration_ms=int((time.perf_counter() - start_time) * 1000),
                error=str(e),
                error_details=details,
                cached_content=cached_content,
            )

        try:
            response = await acompletion(**kwargs)
        except AuthenticationError as e:
            log_failure(e, self._extract_error_details(e))
            raise LLMAuthenticationError(f"Authentication failed: {e}") from e
        except RateLimitError as e:
            details = self._extract_error_details(e)
            log_failure(e, details)
            raise LLMRateLimitError(
                f"Rate limit exceeded: {e}", retry_after=self._retry_after(details)
            ) from e
        except APIConnectionError as e:
            log_failure(e, self._extract_error_details(e))
            raise LLMConnectionError(f"Connection failed: {e}") from e
        except APIError as e:
            log_failure(e, self._extract_error_details(e))
            raise LLMError(f"LLM API error: {e}") from e

        result: str = str(response.choices[0].message.content or "")
        self._log_query(
            system_prompt,
            prompt,
            temperature,
            max_tokens,
            response=result,
            duration_ms=int((time.perf_counter() - start_time) * 1000),
            error=None,
            cached_content=cached_content,
        )
        return self._usage_from_response(response, messages, result)

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        cached_content: str | None = None,
    ) -> str:
        """Generate completion from prompt.

        Args:
            prompt: User prompt.
            system_prompt: Optional system prompt.
            temperature: Sampling temperature.
            max_tokens: Maximum response tokens.
            cached_content: Optional context cache handle.

        Returns:
            Generated text response.
        """
        response = await self.complete(
            prompt,
            system_prompt=system_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            cached_content=cached_content,
        )
        return response.text

    async def generate_with_json(
        self,
        prompt: str,
        system_prompt: str | None = None,
        cached_content: str | None = None,
    ) -> LLMResponse:
        """Generate completion expecting JSON response.

        Args:
            prompt: User prompt.
            system_prompt: Optional system prompt.
            cached_content: Optional context cache handle.

        Returns:
            LLMResponse whose text should hold a JSON document.
        """
        try:
            settings = load_settings()
            json_temperature = settings.llm.json_temperature
        except (ConfigError, OSError):
            json_temperature = JSON_TEMPERATURE
        full_system = (system_prompt or "") + "\n\nRespond with valid JSON only."
        return await self.complete(
            prompt,
            system_prompt=full_system.strip(),
            temperature=json_temperature,
            cached_content=cached_content,
        )

    async def create_context_cache(
        self,
        content: str,
        system_instruction: str = CONTEXT_CACHE_SYSTEM_INSTRUCTION,
        ttl_seconds: int = CONTEXT_CACHE_TTL_SECONDS,
    ) -> ContextCache:
        """Register a large context document and return its handle.

        Google models use the Gemini cached-content API. Other providers have
        no such facility, so the document is held by this client and sent as
        the leading system message of every call that names the handle.

        Args:
            content: The full context document.
            system_instruction: Instruction attached to the cached document.
            ttl_seconds: How long the cache should live.

        Returns:
            ContextCache describing the registration.

        Raises:
            LLMRateLimitError: The provider rate limited the registration.
            LLMError: The provider rejected the registration.
        """
        if self.provider != "google":
            self._prune_inline_caches()
            name = f"{INLINE_CACHE_PREFIX}{uuid.uuid4()}"
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
            self._inline_caches[name] = _InlineCache(
                system_instruction=system_instruction,
                content=content,
                expires_at=expires_at,
            )
            return ContextCache(
                name=name, token_count=estimate_tokens(content), expires_at=expires_at
            )

        if self._genai_client is None:
            self._genai_client = genai.Client(api_key=self.api_key)

        start_time = time.perf_counter()
        try:
            cache = await self._genai_client.aio.caches.create(
                model=self.model,
                config=genai_types.CreateCachedContentConfig(
                    system_instruction=system_instruction,
                    contents=[
                        genai_types.Content(
                            role="user", parts=[genai_types.Part(text=content)]
                        )
                    ],
                    ttl=f"{ttl_seconds}s",
                ),
            )
        except genai_errors.APIError as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            logger.warning(f"Context cache registration failed after {duration_ms}ms: {e}")
            if e.code == 429:
                raise LLMRateLimitError(f"Rate limit exceeded: {e}") from e
            raise LLMError(f"Context cache registration failed: {e}") from e

        usage = getattr(cache, "usage_metadata", None)
        token_count = getattr(usage, "total_token_count", None)
        if not isinstance(token_count, int):
            token_count = estimate_tokens(content)
        expires_at = getattr(cache, "expire_time", None)
        if not isinstance(expires_at, datetime):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)

        return ContextCache(name=cache.name or "", token_count=token_count, expires_at=expires_at)

    def release_context_cache(self, name: str) -> None:
        """Drop an inline context cache once its run is over.

        Remote Gemini caches are left to expire with their TTL.
        """
        if self._inline_caches.pop(name, None) is not None:
            logger.debug(f"Released inline context cache {name}")
