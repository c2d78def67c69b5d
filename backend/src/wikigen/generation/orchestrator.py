# backend/src/wikigen/generation/orchestrator.py
"""Pipeline orchestrator for streaming wiki generation.

A run moves strictly forward through these phases:

1. Caching - Register the codebase document with the model
2. Planning - Ask the model for a plan of pages and dependencies
3. Scheduling - Order pages so dependencies come first
4. Generating - Generate pages level by level, in parallel within a level
5. Complete - Emit every generated page plus token usage

Progress is streamed as events; every await is wrapped in a heartbeat so the
stream is never silent for longer than the configured interval. Any failure
ends the run with exactly one ErrorEvent.
"""

import asyncio
import logging
from contextlib import aclosing
from enum import Enum
from types import MappingProxyType
from typing import Any, AsyncIterator, Awaitable, Mapping

from wikigen.config import Config
from wikigen.constants.generation import (
    DEFAULT_HEARTBEAT_INTERVAL,
    PROGRESS_CACHED,
    PROGRESS_CACHING,
    PROGRESS_COMPLETE,
    PROGRESS_GENERATION_END,
    PROGRESS_GENERATION_START,
    PROGRESS_PLANNED,
    PROGRESS_PLANNING,
    SUMMARY_MAX_LENGTH,
)
from wikigen.constants.llm import CONTEXT_CACHE_TTL_SECONDS
from wikigen.generation.context_cache import ContextCacheBuilder
from wikigen.generation.errors import GenerationCancelled, GenerationError
from wikigen.generation.events import (
    CompleteEvent,
    ErrorEvent,
    GeneratedPageModel,
    PingEvent,
    ProgressEvent,
    UsageModel,
)
from wikigen.generation.heartbeat import (
    Ping,
    Resolved,
    as_completed_with_heartbeat,
    await_with_heartbeat,
)
from wikigen.generation.models import (
    GeneratedPage,
    PlannedPage,
    RepositorySnapshot,
    TokenUsage,
    WikiPlan,
)
from wikigen.generation.page import PageGenerator
from wikigen.generation.planner import PagePlanner
from wikigen.generation.retry import RetryPolicy
from wikigen.generation.scheduler import ExecutionPlan, ScheduleMode, schedule
from wikigen.llm.client import LLMRateLimitError

logger = logging.getLogger(__name__)

RATE_LIMIT_NOTICE = (
    "Rate limit exceeded while generating the wiki. "
    "Please wait a minute and try again."
)


class GenerationPhase(Enum):
    """Phases of a pipeline run."""

    CACHING = "caching"
    PLANNING = "planning"
    SCHEDULING = "scheduling"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


def generation_progress(completed: int, total: int) -> int:
    """Map pages completed to a progress value in the generation band."""
    if total <= 0:
        return PROGRESS_GENERATION_END
    span = PROGRESS_GENERATION_END - PROGRESS_GENERATION_START
    return PROGRESS_GENERATION_START + int(completed / total * span)


def error_message(error: BaseException) -> str:
    """Human-readable text for the terminal error event."""
    if isinstance(error, GenerationError) and error.rate_limited:
        return f"{RATE_LIMIT_NOTICE} (page: {error.slug})"
    if isinstance(error, LLMRateLimitError) or isinstance(
        error.__cause__, LLMRateLimitError
    ):
        return RATE_LIMIT_NOTICE
    return str(error) or error.__class__.__name__


class WikiGenerationPipeline:
    """Runs cache, plan, schedule and generation, streaming progress events.

    Each call to run() owns its own plan, cache handle and generated-page map,
    so one pipeline instance can serve concurrent runs.
    """

    def __init__(
        self,
        llm_client,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        retry_policy: RetryPolicy | None = None,
        cache_ttl_seconds: int = CONTEXT_CACHE_TTL_SECONDS,
        schedule_mode: ScheduleMode | str = ScheduleMode.LEVELS,
        parallel_limit: int = 0,
        summary_length: int = SUMMARY_MAX_LENGTH,
    ):
        """Initialize the pipeline.

        Args:
            llm_client: LLM client shared by every stage.
            heartbeat_interval: Seconds between pings while a call is outstanding.
            retry_policy: Retry policy for every model call.
            cache_ttl_seconds: Context cache time-to-live.
            schedule_mode: LEVELS (parallel within a level) or LINEAR.
            parallel_limit: Max concurrent page calls per level; 0 means no cap.
            summary_length: Max characters in a page summary.
        """
        self.llm_client = llm_client
        self.heartbeat_interval = heartbeat_interval
        self.retry_policy = retry_policy or RetryPolicy()
        self.schedule_mode = ScheduleMode(schedule_mode)
        self.parallel_limit = parallel_limit
        self.cache_builder = ContextCacheBuilder(llm_client, ttl_seconds=cache_ttl_seconds)
        self.planner = PagePlanner(llm_client, retry_policy=self.retry_policy)
        self.page_generator = PageGenerator(
            llm_client, retry_policy=self.retry_policy, summary_length=summary_length
        )

    @classmethod
    def from_settings(cls, llm_client, settings: Config) -> "WikiGenerationPipeline":
        """Build a pipeline from the [generation] config section."""
        gen = settings.generation
        return cls(
            llm_client,
            heartbeat_interval=gen.heartbeat_interval,
            retry_policy=RetryPolicy(max_retries=gen.max_retries, base_delay=gen.base_delay),
            cache_ttl_seconds=gen.cache_ttl_seconds,
            schedule_mode=gen.schedule_mode,
            parallel_limit=gen.parallel_limit,
            summary_length=gen.summary_length,
        )

    async def run(
        self,
        snapshot: RepositorySnapshot,
        cancel_event: asyncio.Event | None = None,
        mode: ScheduleMode | str | None = None,
    ) -> AsyncIterator[Any]:
        """Generate a wiki for snapshot, yielding pipeline events.

        The stream ends with exactly one CompleteEvent or one ErrorEvent. A
        cancelled run ends without either. Closing the iterator early stops
        any page calls still in flight.

        Args:
            snapshot: Repository content to document.
            cancel_event: Optional event; once set the run stops.
            mode: Optional override of the configured schedule mode.

        Yields:
            ProgressEvent, PingEvent, then CompleteEvent or ErrorEvent.
        """
        state: dict[str, GenerationPhase] = {"phase": GenerationPhase.CACHING}
        try:
            async with aclosing(self._run(snapshot, cancel_event, mode, state)) as events:
                async for event in events:
                    yield event
        except GenerationCancelled:
            logger.info(
                f"Wiki generation for {snapshot.full_name} cancelled during "
                f"{state['phase'].value}"
            )
        except Exception as e:
            logger.exception(
                f"Wiki generation for {snapshot.full_name} failed during {state['phase'].value}"
            )
            state["phase"] = GenerationPhase.ERROR
            yield ErrorEvent(message=error_message(e))

    async def _run(
        self,
        snapshot: RepositorySnapshot,
        cancel_event: asyncio.Event | None,
        mode: ScheduleMode | str | None,
        state: dict[str, GenerationPhase],
    ) -> AsyncIterator[Any]:
        usage = TokenUsage()

        # Phase 1: Caching
        yield ProgressEvent(progress=PROGRESS_CACHING, message="Creating context cache...")
        cache = None
        async with aclosing(
            self._heartbeat(self.cache_builder.build(snapshot), cancel_event)
        ) as events:
            async for event in events:
                if isinstance(event, Resolved):
                    cache = event.value
                else:
                    yield event
        try:
            usage.cache_tokens = cache.token_count
            yield ProgressEvent(
                progress=PROGRESS_CACHED,
                message=f"Context cache created ({cache.token_count} tokens)",
            )

            # Phase 2: Planning
            state["phase"] = GenerationPhase.PLANNING
            yield ProgressEvent(progress=PROGRESS_PLANNING, message="Planning wiki structure...")
            plan = None
            async with aclosing(
                self._heartbeat(
                    self.planner.plan(
                        cache.name,
                        snapshot.owner,
                        snapshot.repo,
                        usage=usage,
                        cancel_event=cancel_event,
                    ),
                    cancel_event,
                )
            ) as events:
                async for event in events:
                    if isinstance(event, Resolved):
                        plan = event.value
                    else:
                        yield event
            yield ProgressEvent(progress=PROGRESS_PLANNED, message=f"Planned {len(plan)} pages")

            # Phase 3: Scheduling
            state["phase"] = GenerationPhase.SCHEDULING
            execution = schedule(plan, mode or self.schedule_mode)

            # Phase 4: Generating
            state["phase"] = GenerationPhase.GENERATING
            generated: dict[str, GeneratedPage] = {}
            async with aclosing(
                self._generate(cache.name, plan, execution, generated, usage, cancel_event)
            ) as events:
                async for event in events:
                    yield event

            # Phase 5: Complete
            state["phase"] = GenerationPhase.COMPLETE
            yield ProgressEvent(progress=PROGRESS_COMPLETE, message="Wiki generation complete!")
            yield CompleteEvent(
                pages=[GeneratedPageModel.from_page(generated[page.slug]) for page in plan],
                usage=UsageModel.from_usage(usage),
            )
            logger.info(
                f"Generated {len(generated)} pages for {snapshot.full_name} "
                f"({usage.total_tokens} tokens)"
            )
        finally:
            self.llm_client.release_context_cache(cache.name)

    async def _generate(
        self,
        cache_handle: str,
        plan: WikiPlan,
        execution: ExecutionPlan,
        generated: dict[str, GeneratedPage],
        usage: TokenUsage,
        cancel_event: asyncio.Event | None,
    ) -> AsyncIterator[Any]:
        total = execution.total_pages
        batch_count = len(execution.batches)
        semaphore = asyncio.Semaphore(self.parallel_limit) if self.parallel_limit > 0 else None
        completed = 0

        for index, batch in enumerate(execution.batches):
            _check_cancelled(cancel_event)

            if execution.mode is ScheduleMode.LINEAR:
                message = f"Generating {batch[0].title} ({completed + 1}/{total})"
            else:
                message = (
                    f"Generating level {index + 1}/{batch_count} "
                    f"({len(batch)} {'page' if len(batch) == 1 else 'pages'}): "
                    + ", ".join(page.title for page in batch)
                )
            yield ProgressEvent(
                progress=generation_progress(completed, total),
                message=message,
                current_page=", ".join(page.slug for page in batch),
            )

            # Pages in a level only read what earlier levels produced.
            available = MappingProxyType(dict(generated))
            work = {
                page.slug: self._generate_page(
                    cache_handle, page, available, plan, usage, cancel_event, semaphore
                )
                for page in batch
            }
            async with aclosing(
                as_completed_with_heartbeat(work, self.heartbeat_interval)
            ) as events:
                async for event in events:
                    if isinstance(event, Ping):
                        _check_cancelled(cancel_event)
                        yield PingEvent(message=event.message)
                        continue
                    page = event.value
                    generated[event.key] = page
                    completed += 1
                    yield ProgressEvent(
                        progress=generation_progress(completed, total),
                        message=f"Generated {page.title} ({completed}/{total})",
                        current_page=page.slug,
                    )

    async def _generate_page(
        self,
        cache_handle: str,
        page: PlannedPage,
        available: Mapping[str, GeneratedPage],
        plan: WikiPlan,
        usage: TokenUsage,
        cancel_event: asyncio.Event | None,
        semaphore: asyncio.Semaphore | None,
    ) -> GeneratedPage:
        if semaphore is None:
            return await self.page_generator.generate(
                cache_handle, page, available, plan, usage=usage, cancel_event=cancel_event
            )
        async with semaphore:
            return await self.page_generator.generate(
                cache_handle, page, available, plan, usage=usage, cancel_event=cancel_event
            )

    async def _heartbeat(
        self, awaitable: Awaitable[Any], cancel_event: asyncio.Event | None
    ) -> AsyncIterator[Any]:
        """Yield PingEvents while awaitable runs, then its Resolved result."""
        async with aclosing(await_with_heartbeat(awaitable, self.heartbeat_interval)) as events:
            async for event in events:
                if isinstance(event, Ping):
                    _check_cancelled(cancel_event)
                    yield PingEvent(message=event.message)
                else:
                    yield event


def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise GenerationCancelled("Generation cancelled")
