# backend/src/wikigen/generation/retry.py
"""Retry wrapper with exponential backoff for rate-limited model calls."""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from wikigen.constants.generation import DEFAULT_BASE_DELAY, DEFAULT_MAX_RETRIES
from wikigen.generation.errors import GenerationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]

# Providers phrase their hint as e.g. "Please retry in 31.5s."
RETRY_DELAY_PATTERN = re.compile(r"retry in ([\d.]+)s", re.IGNORECASE)

RATE_LIMIT_STATUSES = (429, "429", "RESOURCE_EXHAUSTED")

# "rate" as a word: matches "Rate limit", "rate-limited", "ratelimit" but not "generate".
RATE_WORD_PATTERN = re.compile(r"\brate(?:[\s_-]?limit\w*)?\b", re.IGNORECASE)

STATUS_429_PATTERN = re.compile(r"\b429\b")


def _error_message(error: BaseException) -> str:
    message = getattr(error, "message", None)
    return str(message) if message else str(error)


def is_rate_limit_error(error: BaseException) -> bool:
    """Default retryability predicate: does the error signal rate limiting?

    Matches an HTTP 429 or RESOURCE_EXHAUSTED status on the error (or on a
    nested ``error`` payload), and messages mentioning 429,
    RESOURCE_EXHAUSTED or the word "rate".

    Args:
        error: The exception raised by the model call.

    Returns:
        True if the call should be retried after a delay.
    """
    for attr in ("status", "status_code", "code"):
        if getattr(error, attr, None) in RATE_LIMIT_STATUSES:
            return True

    nested = getattr(error, "error", None)
    if isinstance(nested, dict) and nested.get("status") in RATE_LIMIT_STATUSES:
        return True

    message = _error_message(error)
    return (
        STATUS_429_PATTERN.search(message) is not None
        or "RESOURCE_EXHAUSTED" in message
        or RATE_WORD_PATTERN.search(message) is not None
    )


def parse_retry_delay(error: BaseException) -> float | None:
    """Extract the provider's suggested delay in seconds, if it gave one.

    The "retry in Ns" hint in the message wins; a ``retry_after`` attribute
    (set from the Retry-After header) is used otherwise.
    """
    match = RETRY_DELAY_PATTERN.search(_error_message(error))
    if match:
        try:
            return float(match.group(1))
        except ValueError:
            pass

    retry_after = getattr(error, "retry_after", None)
    if isinstance(retry_after, (int, float)) and not isinstance(retry_after, bool):
        return float(retry_after)
    return None


@dataclass(frozen=True)
class RetryPolicy:
    """How a single model call is retried.

    Attributes:
        max_retries: Retries after the first attempt (total calls = max_retries + 1).
        base_delay: Seconds; attempt n waits base_delay * 2**n absent a hint.
        is_retryable: Predicate deciding which errors are transient.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    is_retryable: RetryPredicate = is_rate_limit_error

    def delay_for(self, error: BaseException, attempt: int) -> float:
        parsed = parse_retry_delay(error)
        if parsed is not None:
            return parsed
        return self.base_delay * (2**attempt)


async def _sleep(delay: float, cancel_event: asyncio.Event | None = None) -> None:
    """Sleep for delay seconds, waking early if the run is cancelled."""
    if cancel_event is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise GenerationCancelled("Generation cancelled while waiting to retry")


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    cancel_event: asyncio.Event | None = None,
    **overrides: Any,
) -> T:
    """Call fn, retrying retryable failures with adaptive backoff.

    Example:
        result = await retry_with_backoff(
            lambda: client.complete(prompt, cached_content=handle),
            RetryPolicy(max_retries=3, base_delay=2.0),
        )

    Args:
        fn: Zero-argument coroutine factory; called once per attempt.
        policy: Retry policy (defaults to RetryPolicy()).
        cancel_event: Optional event; once set, no further attempt starts
            and any backoff sleep ends with GenerationCancelled.
        **overrides: Field overrides applied on top of policy
            (max_retries, base_delay, is_retryable).

    Returns:
        Whatever fn returns on its first successful attempt.

    Raises:
        GenerationCancelled: cancel_event was set.
        Exception: The original error, when it is not retryable or the
            retries are exhausted.
    """
    policy = policy or RetryPolicy()
    if overrides:
        policy = RetryPolicy(
            max_retries=overrides.get("max_retries", policy.max_retries),
            base_delay=overrides.get("base_delay", policy.base_delay),
            is_retryable=overrides.get("is_retryable", policy.is_retryable),
        )

    attempt = 0
    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCancelled("Generation cancelled")
        try:
            return await fn()
        except Exception as e:
            if attempt >= policy.max_retries or not policy.is_retryable(e):
                raise
            delay = policy.delay_for(e, attempt)
            logger.warning(
                f"Rate limited (attempt {attempt + 1}/{policy.max_retries + 1}), "
                f"retrying in {delay:.1f}s: {e}"
            )
            await _sleep(delay, cancel_event)
            attempt += 1
