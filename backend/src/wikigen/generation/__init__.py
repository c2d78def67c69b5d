# backend/src/wikigen/generation/__init__.py
"""Wiki generation pipeline module."""

from wikigen.generation.context_cache import ContextCacheBuilder
from wikigen.generation.errors import (
    CacheCreationError,
    GenerationCancelled,
    GenerationError,
    PlanParseError,
    WikiGenerationError,
)
from wikigen.generation.events import (
    CompleteEvent,
    ErrorEvent,
    PingEvent,
    ProgressEvent,
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
    SourceFile,
    TokenUsage,
    WikiPlan,
)
from wikigen.generation.orchestrator import GenerationPhase, WikiGenerationPipeline
from wikigen.generation.page import PageGenerator, extract_summary
from wikigen.generation.planner import PagePlanner, extract_json_payload, parse_wiki_plan
from wikigen.generation.retry import RetryPolicy, is_rate_limit_error, retry_with_backoff
from wikigen.generation.scheduler import BrokenEdge, ExecutionPlan, ScheduleMode, schedule

__all__ = [
    # Stages
    "ContextCacheBuilder",
    "PagePlanner",
    "PageGenerator",
    "WikiGenerationPipeline",
    "GenerationPhase",
    # Scheduling
    "BrokenEdge",
    "ExecutionPlan",
    "ScheduleMode",
    "schedule",
    # Retry / heartbeat
    "RetryPolicy",
    "is_rate_limit_error",
    "retry_with_backoff",
    "Ping",
    "Resolved",
    "await_with_heartbeat",
    "as_completed_with_heartbeat",
    # Models
    "GeneratedPage",
    "PlannedPage",
    "RepositorySnapshot",
    "SourceFile",
    "TokenUsage",
    "WikiPlan",
    # Events
    "CompleteEvent",
    "ErrorEvent",
    "PingEvent",
    "ProgressEvent",
    # Parsing
    "extract_json_payload",
    "extract_summary",
    "parse_wiki_plan",
    # Errors
    "CacheCreationError",
    "GenerationCancelled",
    "GenerationError",
    "PlanParseError",
    "WikiGenerationError",
]
