"""Shared pytest fixtures for all tests."""

import asyncio
import json
import re
from datetime import datetime, timedelta, timezone

import pytest

from wikigen.generation.models import RepositorySnapshot, SourceFile
from wikigen.llm.client import ContextCache, LLMResponse, estimate_tokens

PAGE_TITLE_PATTERN = re.compile(r'Generate the "(.+?)" wiki page\.')
DEPENDENCY_TITLE_PATTERN = re.compile(r'## Content from "(.+?)"')


def make_plan(*pages: dict) -> str:
    """Render plan pages as the JSON document a model would return."""
    return json.dumps({"pages": list(pages)})


def plan_page(title: str, slug: str, depends_on=(), priority: int = 5) -> dict:
    return {
        "title": title,
        "slug": slug,
        "url": f"/wiki/acme/widgets/{slug}",
        "systemPrompt": f"Write the {title} page.",
        "dependsOn": list(depends_on),
        "priority": priority,
    }


SCENARIO_PLAN = make_plan(
    plan_page("Overview", "overview", priority=10),
    plan_page("API Reference", "api-reference", priority=8),
    plan_page("Getting Started", "getting-started", ["overview"], priority=7),
    plan_page("Examples", "examples", ["getting-started", "api-reference"], priority=5),
)


class FakeLLMClient:
    """Stand-in for LLMClient that records what the pipeline asked for.

    Attributes:
        page_calls: (title, prompt) per page generation call, in call order.
        completed: Titles in the order their calls finished.
        cache_documents: Every document registered as a context cache.
        released: Cache handles released after a run.
    """

    def __init__(
        self,
        plan_response: str = SCENARIO_PLAN,
        page_errors: dict[str, list[BaseException]] | None = None,
        page_delays: dict[str, float] | None = None,
        plan_errors: list[BaseException] | None = None,
        cache_error: BaseException | None = None,
        cache_delay: float = 0.0,
    ):
        self.plan_response = plan_response
        self.page_errors = {k: list(v) for k, v in (page_errors or {}).items()}
        self.page_delays = page_delays or {}
        self.plan_errors = list(plan_errors or [])
        self.cache_error = cache_error
        self.cache_delay = cache_delay
        self.page_calls: list[tuple[str, str]] = []
        self.plan_calls: list[dict] = []
        self.completed: list[str] = []
        self.cache_documents: list[str] = []
        self.released: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def create_context_cache(self, content, system_instruction=None, ttl_seconds=3600):
        if self.cache_delay:
            await asyncio.sleep(self.cache_delay)
        if self.cache_error is not None:
            raise self.cache_error
        self.cache_documents.append(content)
        return ContextCache(
            name="inline/test-cache",
            token_count=estimate_tokens(content),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
        )

    def release_context_cache(self, name):
        self.released.append(name)

    async def generate_with_json(self, prompt, system_prompt=None, cached_content=None):
        self.plan_calls.append({"prompt": prompt, "cached_content": cached_content})
        if self.plan_errors:
            raise self.plan_errors.pop(0)
        return LLMResponse(text=self.plan_response, input_tokens=100, output_tokens=50)

    async def complete(
        self,
        prompt,
        system_prompt=None,
        temperature=None,
        max_tokens=None,
        cached_content=None,
    ):
        title = PAGE_TITLE_PATTERN.search(prompt).group(1)
        self.page_calls.append((title, prompt))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.page_delays.get(title, 0.0)
            if delay:
                await asyncio.sleep(delay)
            errors = self.page_errors.get(title)
            if errors:
                raise errors.pop(0)
        finally:
            self.in_flight -= 1
        self.completed.append(title)
        return LLMResponse(
            text=f"# {title}\n\nThe {title} page of the wiki.\n\n## Details\n\nMore text.",
            input_tokens=10,
            output_tokens=5,
        )

    def prompt_for(self, title: str) -> str:
        for called_title, prompt in self.page_calls:
            if called_title == title:
                return prompt
        raise KeyError(title)

    def dependencies_seen(self, title: str) -> set[str]:
        """Titles of dependency pages inlined into title's prompt."""
        return set(DEPENDENCY_TITLE_PATTERN.findall(self.prompt_for(title)))


@pytest.fixture
def fake_llm():
    """Fake LLM client returning the four-page scenario plan."""
    return FakeLLMClient()


@pytest.fixture
def snapshot():
    """A small repository snapshot."""
    return RepositorySnapshot(
        owner="acme",
        repo="widgets",
        description="Widgets for everyone",
        primary_language="Python",
        files=(
            SourceFile(path="widgets/__init__.py", content="VERSION = '1.0'\n", language="python"),
            SourceFile(
                path="widgets/core.py",
                content="def make_widget(name: str) -> dict:\n    return {'name': name}\n",
                language="python",
            ),
        ),
        package_manifest={"name": "widgets", "version": "1.0"},
        readme="# Widgets\n\nMake widgets.",
    )
