# backend/tests/test_llm.py
"""LLM client tests."""

import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from google.genai import errors as genai_errors
from litellm.exceptions import AuthenticationError, RateLimitError

from wikigen.llm import (
    LLMAuthenticationError,
    LLMClient,
    LLMError,
    LLMRateLimitError,
    estimate_tokens,
)


@pytest.fixture
def mock_completion():
    """Mock litellm completion response."""
    with patch("wikigen.llm.client.acompletion") as mock:
        mock.return_value = AsyncMock(
            choices=[
                AsyncMock(
                    message=AsyncMock(content="Test response")
                )
            ]
        )
        yield mock


async def test_llm_client_generates_response(mock_completion):
    """LLM client generates response from prompt."""
    client = LLMClient(provider="openai", model="gpt-4o")

    response = await client.generate("Test prompt")

    assert response == "Test response"
    mock_completion.assert_called_once()


async def test_llm_client_uses_configured_model(mock_completion):
    """LLM client uses configured provider and model."""
    client = LLMClient(provider="anthropic", model="claude-3-sonnet")

    await client.generate("Test")

    call_args = mock_completion.call_args
    assert call_args.kwargs["model"] == "anthropic/claude-3-sonnet"


async def test_llm_client_google_model_string(mock_completion):
    """Google models are routed through LiteLLM's gemini/ prefix."""
    client = LLMClient(provider="google", model="gemini-2.5-flash")

    await client.generate("Test")

    assert mock_completion.call_args.kwargs["model"] == "gemini/gemini-2.5-flash"


async def test_llm_client_passes_system_prompt(mock_completion):
    """LLM client includes system prompt in messages."""
    client = LLMClient(provider="openai", model="gpt-4o")

    await client.generate(
        "User message",
        system_prompt="You are a helpful assistant",
    )

    messages = mock_completion.call_args.kwargs["messages"]
    assert messages[0]["role"] == "system"
    assert messages[0]["content"] == "You are a helpful assistant"
    assert messages[1]["role"] == "user"
    assert messages[1]["content"] == "User message"


async def test_llm_client_generate_with_json_adds_instruction(mock_completion):
    """generate_with_json adds JSON instruction to system prompt."""
    client = LLMClient(provider="openai", model="gpt-4o")

    response = await client.generate_with_json(
        "Generate user data",
        system_prompt="You are a data generator",
    )

    messages = mock_completion.call_args.kwargs["messages"]
    assert messages[0]["role"] == "system"
    assert "Respond with valid JSON only" in messages[0]["content"]
    assert "You are a data generator" in messages[0]["content"]
    assert response.text == "Test response"


async def test_llm_client_generate_with_json_uses_lower_temperature(mock_completion):
    """generate_with_json uses lower temperature for structured output."""
    client = LLMClient(provider="openai", model="gpt-4o")

    await client.generate_with_json("Generate data")

    assert mock_completion.call_args.kwargs["temperature"] == 0.3


async def test_complete_reports_provider_usage():
    """Provider-reported token counts are passed through."""
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="Hello"))],
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=7, prompt_tokens_details=None),
    )
    with patch("wikigen.llm.client.acompletion", AsyncMock(return_value=response)):
        client = LLMClient(provider="openai", model="gpt-4o")
        result = await client.complete("Prompt")

    assert result.input_tokens == 120
    assert result.output_tokens == 7


async def test_complete_estimates_usage_when_unreported(mock_completion):
    """Missing usage falls back to a characters/4 estimate."""
    client = LLMClient(provider="openai", model="gpt-4o")

    result = await client.complete("x" * 40)

    assert result.input_tokens == 10
    assert result.output_tokens == estimate_tokens("Test response")


def test_estimate_tokens_rounds_up():
    """Token estimate is ceil(chars / 4)."""
    assert estimate_tokens("") == 0
    assert estimate_tokens("abc") == 1
    assert estimate_tokens("abcde") == 2


async def test_llm_client_raises_authentication_error():
    """LLM client raises LLMAuthenticationError on auth failure."""
    with patch("wikigen.llm.client.acompletion") as mock:
        mock.side_effect = AuthenticationError(
            message="Invalid API key",
            llm_provider="openai",
            model="gpt-4o",
        )
        client = LLMClient(provider="openai", model="gpt-4o")

        with pytest.raises(LLMAuthenticationError) as exc_info:
            await client.generate("Test")

        assert "Authentication failed" in str(exc_info.value)


async def test_llm_client_raises_rate_limit_error():
    """LLM client raises LLMRateLimitError on rate limit."""
    with patch("wikigen.llm.client.acompletion") as mock:
        mock.side_effect = RateLimitError(
            message="Rate limit exceeded, retry in 3s",
            llm_provider="openai",
            model="gpt-4o",
        )
        client = LLMClient(provider="openai", model="gpt-4o")

        with pytest.raises(LLMRateLimitError) as exc_info:
            await client.generate("Test")

        assert "Rate limit exceeded" in str(exc_info.value)
        assert "retry in 3s" in str(exc_info.value)
        assert exc_info.value.status_code == 429


async def test_failed_query_is_logged(tmp_path):
    """Failures are written to the JSONL query log with the error text."""
    log_path = tmp_path / "logs" / "llm-queries.jsonl"
    with patch("wikigen.llm.client.acompletion") as mock:
        mock.side_effect = RateLimitError(
            message="Rate limit exceeded",
            llm_provider="openai",
            model="gpt-4o",
        )
        client = LLMClient(provider="openai", model="gpt-4o", log_path=log_path)

        with pytest.raises(LLMRateLimitError):
            await client.generate("Test")

    entry = json.loads(log_path.read_text().strip().splitlines()[-1])
    assert entry["response"] is None
    assert "Rate limit exceeded" in entry["error"]
    assert entry["request"]["prompt"] == "Test"


class TestInlineContextCache:
    """Providers without a cache API hold the document in-process."""

    async def test_inline_cache_sent_as_leading_system_message(self, mock_completion):
        client = LLMClient(provider="openai", model="gpt-4o")

        cache = await client.create_context_cache(
            "# Repository: acme/widgets", system_instruction="You document code."
        )
        await client.generate("Write a page", system_prompt="Be terse", cached_content=cache.name)

        assert cache.name.startswith("inline/")
        assert cache.token_count == estimate_tokens("# Repository: acme/widgets")
        messages = mock_completion.call_args.kwargs["messages"]
        assert messages[0]["role"] == "system"
        assert messages[0]["content"].startswith("You document code.")
        assert "# Repository: acme/widgets" in messages[0]["content"]
        assert messages[0]["content"].endswith("Be terse")
        assert messages[-1] == {"role": "user", "content": "Write a page"}
        assert "cached_content" not in mock_completion.call_args.kwargs

    async def test_unknown_handle_raises(self, mock_completion):
        client = LLMClient(provider="openai", model="gpt-4o")

        with pytest.raises(LLMError, match="Unknown context cache"):
            await client.generate("Test", cached_content="inline/missing")

        mock_completion.assert_not_called()

    async def test_expired_handle_raises(self, mock_completion):
        client = LLMClient(provider="openai", model="gpt-4o")
        cache = await client.create_context_cache("doc")
        client._inline_caches[cache.name].expires_at = datetime.now(timezone.utc) - timedelta(
            seconds=1
        )

        with pytest.raises(LLMError, match="expired"):
            await client.generate("Test", cached_content=cache.name)

    async def test_registration_prunes_expired_handles(self):
        client = LLMClient(provider="openai", model="gpt-4o")
        stale = [await client.create_context_cache("x" * 1_000_000) for _ in range(3)]
        for cache in stale:
            client._inline_caches[cache.name].expires_at = datetime.now(timezone.utc) - timedelta(
                seconds=1
            )

        fresh = await client.create_context_cache("doc")

        assert list(client._inline_caches) == [fresh.name]

    async def test_release_drops_handle(self, mock_completion):
        client = LLMClient(provider="openai", model="gpt-4o")
        cache = await client.create_context_cache("doc")

        client.release_context_cache(cache.name)
        client.release_context_cache(cache.name)

        assert client._inline_caches == {}
        with pytest.raises(LLMError, match="Unknown context cache"):
            await client.generate("Test", cached_content=cache.name)


class TestGoogleContextCache:
    """Google models register the document with the cached-content API."""

    def _genai_client(self, create):
        genai_client = MagicMock()
        genai_client.aio.caches.create = create
        return genai_client

    async def test_registers_with_ttl_and_returns_handle(self):
        created = SimpleNamespace(
            name="cachedContents/abc123",
            usage_metadata=SimpleNamespace(total_token_count=4200),
            expire_time=None,
        )
        create = AsyncMock(return_value=created)
        client = LLMClient(
            provider="google",
            model="gemini-2.5-flash",
            genai_client=self._genai_client(create),
        )

        cache = await client.create_context_cache("codebase", ttl_seconds=3600)

        assert cache.name == "cachedContents/abc123"
        assert cache.token_count == 4200
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "gemini-2.5-flash"
        assert kwargs["config"].ttl == "3600s"

    async def test_remote_handle_passed_as_cached_content(self, mock_completion):
        client = LLMClient(provider="google", model="gemini-2.5-flash")

        await client.generate(
            "Write a page", system_prompt="Be terse", cached_content="cachedContents/abc123"
        )

        kwargs = mock_completion.call_args.kwargs
        assert kwargs["cached_content"] == "cachedContents/abc123"
        assert all(m["role"] != "system" for m in kwargs["messages"])
        assert kwargs["messages"][-1]["content"].startswith("SYSTEM INSTRUCTIONS: Be terse")

    async def test_quota_error_becomes_rate_limit_error(self):
        create = AsyncMock(
            side_effect=genai_errors.APIError(
                429, {"error": {"message": "quota", "status": "RESOURCE_EXHAUSTED"}}
            )
        )
        client = LLMClient(
            provider="google",
            model="gemini-2.5-flash",
            genai_client=self._genai_client(create),
        )

        with pytest.raises(LLMRateLimitError):
            await client.create_context_cache("codebase")

    async def test_other_api_error_becomes_llm_error(self):
        create = AsyncMock(
            side_effect=genai_errors.APIError(
                400, {"error": {"message": "bad request", "status": "INVALID_ARGUMENT"}}
            )
        )
        client = LLMClient(
            provider="google",
            model="gemini-2.5-flash",
            genai_client=self._genai_client(create),
        )

        with pytest.raises(LLMError) as exc_info:
            await client.create_context_cache("codebase")

        assert not isinstance(exc_info.value, LLMRateLimitError)
