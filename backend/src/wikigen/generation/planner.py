# backend/src/wikigen/generation/planner.py
"""Page planner: asks the model for a wiki plan and parses it."""

import json
import logging
import re
from typing import Any, Mapping

from wikigen.constants.generation import (
    DEFAULT_PAGE_PRIORITY,
    PRIORITY_MAX,
    PRIORITY_MIN,
)
from wikigen.generation.errors import PlanParseError
from wikigen.generation.models import PlannedPage, TokenUsage, WikiPlan, slugify, wiki_url
from wikigen.generation.prompts import PAGE_ARCHETYPES, get_plan_prompt
from wikigen.generation.retry import RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

FENCED_BLOCK_PATTERN = re.compile(r"```(?:json|JSON)?[ \t]*\n?(.*?)\n?```", re.DOTALL)


def _json_candidates(text: str) -> list[str]:
    """Substrings of text that may hold the plan, most specific first."""
    candidates = [
        block.strip() for block in FENCED_BLOCK_PATTERN.findall(text) if "{" in block
    ]
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])
    return candidates


def extract_json_payload(text: str) -> dict[str, Any]:
    """Pull a JSON object out of free-text model output.

    Tries fenced code blocks first, then the largest brace-delimited
    substring.

    Args:
        text: Raw model response.

    Returns:
        The decoded JSON object.

    Raises:
        PlanParseError: No JSON-shaped substring exists or none decodes to
            an object.
    """
    candidates = _json_candidates(text)
    if not candidates:
        raise PlanParseError("Failed to extract JSON from AI response", response=text)

    last_error: Exception | None = None
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            last_error = e
            continue
        if isinstance(data, dict):
            return data

    raise PlanParseError(
        f"Failed to parse JSON plan from AI response: {last_error or 'not an object'}",
        response=text,
    )


def _coerce_priority(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_PAGE_PRIORITY
    try:
        priority = int(value)
    except (TypeError, ValueError):
        return DEFAULT_PAGE_PRIORITY
    return max(PRIORITY_MIN, min(PRIORITY_MAX, priority))


def _coerce_depends_on(value: Any) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return frozenset()
    return frozenset(str(v).strip() for v in value if str(v).strip())


def _page_from_dict(item: Mapping[str, Any], owner: str, repo: str) -> PlannedPage | None:
    title = str(item.get("title") or "").strip()
    slug = str(item.get("slug") or "").strip()
    if not title and not slug:
        return None
    if not slug:
        slug = slugify(title)
    if not title:
        title = slug.replace("-", " ").title()

    return PlannedPage(
        title=title,
        slug=slug,
        url=str(item.get("url") or "").strip() or wiki_url(owner, repo, slug),
        instructions=str(item.get("systemPrompt") or item.get("instructions") or "").strip(),
        depends_on=_coerce_depends_on(item.get("dependsOn", item.get("depends_on"))),
        priority=_coerce_priority(item.get("priority", DEFAULT_PAGE_PRIORITY)),
    )


def parse_wiki_plan(text: str, owner: str, repo: str) -> WikiPlan:
    """Parse the model's planning response into a WikiPlan.

    Missing urls and slugs are derived, priorities are clamped to 1-10 and
    duplicate slugs keep their first occurrence.

    Args:
        text: Raw model response.
        owner: Repository owner (for derived urls).
        repo: Repository name (for derived urls).

    Returns:
        The parsed plan.

    Raises:
        PlanParseError: The response holds no usable plan.
    """
    data = extract_json_payload(text)
    raw_pages = data.get("pages")
    if not isinstance(raw_pages, list):
        raise PlanParseError('JSON plan has no "pages" array', response=text)

    pages: list[PlannedPage] = []
    seen: set[str] = set()
    for item in raw_pages:
        if not isinstance(item, dict):
            logger.warning(f"Skipping malformed plan entry: {item!r}")
            continue
        page = _page_from_dict(item, owner, repo)
        if page is None:
            logger.warning(f"Skipping plan entry without title or slug: {item!r}")
            continue
        if page.slug in seen:
            logger.warning(f"Skipping duplicate page slug in plan: {page.slug}")
            continue
        seen.add(page.slug)
        pages.append(page)

    if not pages:
        raise PlanParseError("JSON plan contains no pages", response=text)

    return WikiPlan(pages=tuple(pages))


class PagePlanner:
    """Plans the wiki's pages and their dependencies with one model call."""

    def __init__(
        self,
        llm_client,
        retry_policy: RetryPolicy | None = None,
        archetypes: Mapping[str, dict[str, str]] = PAGE_ARCHETYPES,
    ):
        """Initialize the planner.

        Args:
            llm_client: LLM client for generation.
            retry_policy: Retry policy for the planning call.
            archetypes: Page archetype catalog shown to the model as guidance.
        """
        self.llm_client = llm_client
        self.retry_policy = retry_policy or RetryPolicy()
        self.archetypes = archetypes

    async def plan(
        self,
        cache_handle: str,
        owner: str,
        repo: str,
        usage: TokenUsage | None = None,
        cancel_event=None,
    ) -> WikiPlan:
        """Ask the model for a plan and parse it.

        Args:
            cache_handle: Context cache handle holding the codebase.
            owner: Repository owner.
            repo: Repository name.
            usage: Optional accumulator for token usage.
            cancel_event: Optional asyncio.Event that aborts retries.

        Returns:
            The parsed WikiPlan.

        Raises:
            PlanParseError: The response held no usable plan (not retried).
        """
        prompt = get_plan_prompt(owner, repo, self.archetypes)

        response = await retry_with_backoff(
            lambda: self.llm_client.generate_with_json(prompt, cached_content=cache_handle),
            self.retry_policy,
            cancel_event=cancel_event,
        )
        if usage is not None:
            usage.add(response.input_tokens, response.output_tokens)

        plan = parse_wiki_plan(response.text, owner, repo)
        logger.info(f"Planned {len(plan)} pages: {', '.join(plan.slugs)}")
        return plan
