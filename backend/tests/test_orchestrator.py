# backend/tests/test_orchestrator.py
"""Pipeline orchestrator tests."""

import asyncio
from contextlib import aclosing
from unittest.mock import AsyncMock

from conftest import FakeLLMClient, make_plan, plan_page
from wikigen.config import Config
from wikigen.generation.errors import GenerationError
from wikigen.generation.events import (
    CompleteEvent,
    ErrorEvent,
    PingEvent,
    ProgressEvent,
)
from wikigen.generation.orchestrator import (
    RATE_LIMIT_NOTICE,
    WikiGenerationPipeline,
    error_message,
    generation_progress,
)
from wikigen.generation.retry import RetryPolicy
from wikigen.generation.scheduler import ScheduleMode
from wikigen.llm.client import LLMError, LLMRateLimitError


def make_pipeline(llm, **kwargs) -> WikiGenerationPipeline:
    kwargs.setdefault("heartbeat_interval", 0.05)
    kwargs.setdefault("retry_policy", RetryPolicy(max_retries=2, base_delay=0.0))
    return WikiGenerationPipeline(llm, **kwargs)


async def run_all(pipeline, snapshot, **kwargs) -> list:
    return [event async for event in pipeline.run(snapshot, **kwargs)]


def progress_values(events) -> list[int]:
    return [e.progress for e in events if isinstance(e, ProgressEvent)]


# =============================================================================
# End-to-end scenario
# =============================================================================


class TestScenario:
    """Overview, API Reference, Getting Started (needs Overview), Examples
    (needs Getting Started and API Reference)."""

    async def test_dependencies_exist_before_dependents(self, fake_llm, snapshot):
        events = await run_all(make_pipeline(fake_llm), snapshot)

        assert isinstance(events[-1], CompleteEvent)
        assert fake_llm.dependencies_seen("Overview") == set()
        assert fake_llm.dependencies_seen("API Reference") == set()
        assert fake_llm.dependencies_seen("Getting Started") == {"Overview"}
        assert fake_llm.dependencies_seen("Examples") == {"Getting Started", "API Reference"}

        order = fake_llm.completed
        assert order.index("Overview") < order.index("Getting Started")
        assert order.index("Getting Started") < order.index("Examples")
        assert order.index("API Reference") < order.index("Examples")

    async def test_level_zero_runs_in_parallel(self, snapshot):
        llm = FakeLLMClient(page_delays={"Overview": 0.1, "API Reference": 0.1})

        await run_all(make_pipeline(llm), snapshot)

        assert llm.max_in_flight == 2

    async def test_linear_mode_runs_one_page_at_a_time(self, snapshot):
        llm = FakeLLMClient(page_delays={"Overview": 0.05, "API Reference": 0.05})

        events = await run_all(make_pipeline(llm, schedule_mode=ScheduleMode.LINEAR), snapshot)

        assert isinstance(events[-1], CompleteEvent)
        assert llm.max_in_flight == 1
        assert llm.completed == ["Overview", "API Reference", "Getting Started", "Examples"]

    async def test_mode_override_per_run(self, snapshot):
        llm = FakeLLMClient(page_delays={"Overview": 0.05, "API Reference": 0.05})

        await run_all(make_pipeline(llm), snapshot, mode="linear")

        assert llm.max_in_flight == 1

    async def test_parallel_limit_caps_concurrency(self, snapshot):
        plan = make_plan(*(plan_page(f"Page {i}", f"page-{i}") for i in range(5)))
        llm = FakeLLMClient(
            plan_response=plan, page_delays={f"Page {i}": 0.05 for i in range(5)}
        )

        events = await run_all(make_pipeline(llm, parallel_limit=2), snapshot)

        assert isinstance(events[-1], CompleteEvent)
        assert llm.max_in_flight == 2

    async def test_complete_event_contents(self, fake_llm, snapshot):
        events = await run_all(make_pipeline(fake_llm), snapshot)

        complete = events[-1]
        assert [p.slug for p in complete.pages] == [
            "overview",
            "api-reference",
            "getting-started",
            "examples",
        ]
        assert complete.pages[0].summary == "The Overview page of the wiki."
        # 1 planning call (100/50) + 4 page calls (10/5 each)
        assert complete.usage.input_tokens == 140
        assert complete.usage.output_tokens == 70
        assert complete.usage.total_tokens == 210
        assert complete.usage.cache_tokens > 0

    async def test_exactly_one_terminal_event(self, fake_llm, snapshot):
        events = await run_all(make_pipeline(fake_llm), snapshot)

        terminal = [e for e in events if isinstance(e, (CompleteEvent, ErrorEvent))]
        assert terminal == [events[-1]]


# =============================================================================
# Progress
# =============================================================================


class TestProgress:
    async def test_progress_is_monotonic_and_ends_at_100(self, fake_llm, snapshot):
        events = await run_all(make_pipeline(fake_llm), snapshot)

        values = progress_values(events)
        assert values == sorted(values)
        assert values[-1] == 100
        assert values.count(100) == 1
        assert isinstance(events[-2], ProgressEvent) and events[-2].progress == 100

    async def test_progress_advances_per_page(self, fake_llm, snapshot):
        events = await run_all(make_pipeline(fake_llm), snapshot)

        page_done = [
            e
            for e in events
            if isinstance(e, ProgressEvent) and e.message.startswith("Generated ")
        ]
        assert [e.current_page for e in page_done] == [
            "overview",
            "api-reference",
            "getting-started",
            "examples",
        ]
        assert [e.progress for e in page_done] == [57, 70, 82, 95]

    async def test_level_events_name_pages(self, fake_llm, snapshot):
        events = await run_all(make_pipeline(fake_llm), snapshot)

        levels = [
            e for e in events if isinstance(e, ProgressEvent) and e.message.startswith("Generating level")
        ]
        assert len(levels) == 3
        assert levels[0].message.startswith("Generating level 1/3 (2 pages)")
        assert levels[0].current_page == "overview, api-reference"
        assert levels[2].current_page == "examples"

    def test_generation_progress_band(self):
        assert generation_progress(0, 4) == 45
        assert generation_progress(4, 4) == 95
        assert generation_progress(0, 0) == 95

    async def test_heartbeats_while_waiting(self, snapshot):
        llm = FakeLLMClient(cache_delay=0.2, page_delays={"Examples": 0.2})

        events = await run_all(make_pipeline(llm), snapshot)

        pings = [i for i, e in enumerate(events) if isinstance(e, PingEvent)]
        assert len(pings) >= 4
        assert isinstance(events[-1], CompleteEvent)


# =============================================================================
# Errors
# =============================================================================


class TestErrors:
    async def test_cache_failure_emits_single_error(self, snapshot):
        llm = FakeLLMClient(cache_error=LLMError("bad credentials"))

        events = await run_all(make_pipeline(llm), snapshot)

        assert isinstance(events[-1], ErrorEvent)
        assert "bad credentials" in events[-1].message
        assert not any(isinstance(e, CompleteEvent) for e in events)
        assert llm.plan_calls == []

    async def test_plan_parse_failure_emits_error(self, snapshot):
        llm = FakeLLMClient(plan_response="no plan here")

        events = await run_all(make_pipeline(llm), snapshot)

        assert isinstance(events[-1], ErrorEvent)
        assert "JSON" in events[-1].message
        assert llm.page_calls == []

    async def test_page_failure_aborts_run(self, snapshot):
        llm = FakeLLMClient(page_errors={"Getting Started": [LLMError("model exploded")]})

        events = await run_all(make_pipeline(llm), snapshot)

        errors = [e for e in events if isinstance(e, ErrorEvent)]
        assert len(errors) == 1
        assert "model exploded" in errors[0].message
        assert not any(isinstance(e, CompleteEvent) for e in events)
        assert "Examples" not in [title for title, _ in llm.page_calls]

    async def test_exhausted_rate_limit_message(self, snapshot):
        llm = FakeLLMClient(
            page_errors={"Overview": [LLMRateLimitError("429") for _ in range(3)]}
        )

        events = await run_all(make_pipeline(llm), snapshot)

        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].message.startswith(RATE_LIMIT_NOTICE)
        assert "overview" in events[-1].message

    async def test_transient_rate_limit_is_invisible(self, snapshot):
        llm = FakeLLMClient(page_errors={"Overview": [LLMRateLimitError("429 retry in 0s")]})

        events = await run_all(make_pipeline(llm), snapshot)

        assert isinstance(events[-1], CompleteEvent)
        assert not any(isinstance(e, ErrorEvent) for e in events)

    def test_error_message_for_wrapped_rate_limit(self):
        error = RuntimeError("cache failed")
        error.__cause__ = LLMRateLimitError("429")

        assert error_message(error) == RATE_LIMIT_NOTICE
        assert error_message(GenerationError("x", slug="s")) == "x"


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    async def test_cancel_event_ends_stream_silently(self, snapshot):
        llm = FakeLLMClient(page_delays={"Overview": 1.0, "API Reference": 1.0})
        cancel = asyncio.Event()
        events = []

        async for event in make_pipeline(llm).run(snapshot, cancel_event=cancel):
            events.append(event)
            if isinstance(event, ProgressEvent) and event.message.startswith("Generating level"):
                cancel.set()

        assert not any(isinstance(e, (CompleteEvent, ErrorEvent)) for e in events)
        assert "Getting Started" not in [title for title, _ in llm.page_calls]

    async def test_closing_stream_cancels_in_flight_pages(self, snapshot):
        llm = FakeLLMClient(page_delays={"Overview": 5.0, "API Reference": 5.0})

        async with aclosing(make_pipeline(llm).run(snapshot)) as events:
            async for event in events:
                if isinstance(event, PingEvent) and llm.in_flight:
                    break

        await asyncio.sleep(0.05)
        assert llm.in_flight == 0
        assert llm.completed == []


# =============================================================================
# Cache lifecycle
# =============================================================================


class TestCacheRelease:
    async def test_released_after_complete(self, fake_llm, snapshot):
        events = await run_all(make_pipeline(fake_llm), snapshot)

        assert isinstance(events[-1], CompleteEvent)
        assert fake_llm.released == ["inline/test-cache"]

    async def test_released_after_failure(self, snapshot):
        llm = FakeLLMClient(page_errors={"Overview": [LLMError("model exploded")]})

        events = await run_all(make_pipeline(llm), snapshot)

        assert isinstance(events[-1], ErrorEvent)
        assert llm.released == ["inline/test-cache"]

    async def test_released_when_stream_closed(self, snapshot):
        llm = FakeLLMClient(page_delays={"Overview": 5.0, "API Reference": 5.0})

        async with aclosing(make_pipeline(llm).run(snapshot)) as events:
            async for event in events:
                if isinstance(event, PingEvent) and llm.in_flight:
                    break

        assert llm.released == ["inline/test-cache"]

    async def test_nothing_released_when_cache_fails(self, snapshot):
        llm = FakeLLMClient(cache_error=LLMError("bad credentials"))

        await run_all(make_pipeline(llm), snapshot)

        assert llm.released == []


def test_from_settings_reads_generation_section():
    pipeline = WikiGenerationPipeline.from_settings(AsyncMock(), Config())

    assert pipeline.heartbeat_interval == 2.0
    assert pipeline.retry_policy.max_retries == 3
    assert pipeline.schedule_mode is ScheduleMode.LEVELS
    assert pipeline.parallel_limit == 0
    assert pipeline.cache_builder.ttl_seconds == 3600
