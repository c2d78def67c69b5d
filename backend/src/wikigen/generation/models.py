# backend/src/wikigen/generation/models.py
"""Data structures shared by the generation pipeline.

Everything here lives for a single pipeline run. Planned and generated pages
are frozen once created; the run only ever adds new objects.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterator

from wikigen.constants.generation import WIKI_URL_TEMPLATE


@dataclass(frozen=True)
class SourceFile:
    """A single file from the repository snapshot."""

    path: str
    content: str
    language: str = ""
    size: int = 0


@dataclass(frozen=True)
class RepositorySnapshot:
    """Codebase content handed to the pipeline by the repository collaborator.

    Attributes:
        owner: Repository owner (user or organisation).
        repo: Repository name.
        files: Source files to document.
        description: Optional repository description.
        primary_language: Optional primary language label.
        package_manifest: Optional parsed manifest (package.json, pyproject...).
        readme: Optional README text.
    """

    owner: str
    repo: str
    files: tuple[SourceFile, ...] = ()
    description: str | None = None
    primary_language: str | None = None
    package_manifest: dict[str, Any] | None = None
    readme: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def total_characters(self) -> int:
        return sum(len(f.content) for f in self.files)


def slugify(title: str) -> str:
    """Turn a page title into a URL-friendly slug (lowercase, hyphens)."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug or "page"


def wiki_url(owner: str, repo: str, slug: str) -> str:
    """Build the wiki URL for a page."""
    return WIKI_URL_TEMPLATE.format(owner=owner, repo=repo, slug=slug)


@dataclass(frozen=True)
class PlannedPage:
    """A page proposed by the planner.

    Attributes:
        title: Page title.
        slug: Identifier unique within the plan.
        url: Wiki URL, stored so generated links can reuse it verbatim.
        instructions: Free-text generation brief for this page.
        depends_on: Slugs of pages whose content this page builds on.
        priority: 1-10, higher is generated earlier among ready pages.
    """

    title: str
    slug: str
    url: str
    instructions: str = ""
    depends_on: frozenset[str] = field(default_factory=frozenset)
    priority: int = 5

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "slug": self.slug,
            "url": self.url,
            "systemPrompt": self.instructions,
            "dependsOn": sorted(self.depends_on),
            "priority": self.priority,
        }


@dataclass(frozen=True)
class WikiPlan:
    """Ordered collection of planned pages, unique by slug."""

    pages: tuple[PlannedPage, ...] = ()

    def __post_init__(self):
        seen: set[str] = set()
        for page in self.pages:
            if page.slug in seen:
                raise ValueError(f"Duplicate page slug in plan: {page.slug}")
            seen.add(page.slug)

    def __len__(self) -> int:
        return len(self.pages)

    def __iter__(self) -> Iterator[PlannedPage]:
        return iter(self.pages)

    @property
    def slugs(self) -> list[str]:
        return [p.slug for p in self.pages]

    def get(self, slug: str) -> PlannedPage | None:
        for page in self.pages:
            if page.slug == slug:
                return page
        return None


@dataclass(frozen=True)
class GeneratedPage:
    """A finished wiki page.

    Attributes:
        slug: Slug of the planned page this was generated from.
        title: Page title.
        content: Markdown content.
        url: Wiki URL.
        summary: Short summary taken from the first prose paragraph.
    """

    slug: str
    title: str
    content: str
    url: str
    summary: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "title": self.title,
            "content": self.content,
            "url": self.url,
            "summary": self.summary,
        }


@dataclass
class TokenUsage:
    """Token accounting accumulated across every model call in a run."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, input_tokens: int = 0, output_tokens: int = 0) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
            "cacheTokens": self.cache_tokens,
        }
