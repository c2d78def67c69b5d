# backend/src/wikigen/generation/events.py
"""Events emitted by the generation pipeline.

Each event serialises to one server-sent-events frame:

    event: progress
    data: {"type": "progress", "progress": 45, "message": "...", "currentPage": "overview"}
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from wikigen.generation.models import GeneratedPage, TokenUsage


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_sse(self) -> str:
        """Frame the event for a text/event-stream response."""
        return f"event: {self.type}\ndata: {self.model_dump_json(by_alias=True, exclude_none=True)}\n\n"


class ProgressEvent(_Event):
    """Pipeline progress, 0-100."""

    type: Literal["progress"] = "progress"
    progress: int = Field(..., ge=0, le=100)
    message: str
    current_page: str | None = Field(default=None, alias="currentPage")


class PingEvent(_Event):
    """Keep-alive while a slow call is outstanding."""

    type: Literal["ping"] = "ping"
    message: str | None = None


class GeneratedPageModel(BaseModel):
    slug: str
    title: str
    content: str
    url: str
    summary: str

    @classmethod
    def from_page(cls, page: GeneratedPage) -> "GeneratedPageModel":
        return cls(**page.to_dict())


class UsageModel(BaseModel):
    """Token usage accumulated over a run."""

    model_config = ConfigDict(populate_by_name=True)

    input_tokens: int = Field(default=0, alias="inputTokens")
    output_tokens: int = Field(default=0, alias="outputTokens")
    total_tokens: int = Field(default=0, alias="totalTokens")
    cache_tokens: int = Field(default=0, alias="cacheTokens")

    @classmethod
    def from_usage(cls, usage: TokenUsage) -> "UsageModel":
        return cls.model_validate(usage.to_dict())


class CompleteEvent(_Event):
    """Terminal success event carrying every generated page."""

    type: Literal["complete"] = "complete"
    pages: list[GeneratedPageModel]
    usage: UsageModel


class ErrorEvent(_Event):
    """Terminal failure event."""

    type: Literal["error"] = "error"
    message: str


PipelineEvent = Annotated[
    Union[ProgressEvent, PingEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]
