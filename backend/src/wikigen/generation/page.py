# backend/src/wikigen/generation/page.py
"""Page generator: writes one wiki page from the cached codebase."""

import logging
from typing import Mapping

from wikigen.constants.generation import SUMMARY_MAX_LENGTH
from wikigen.generation.errors import GenerationCancelled, GenerationError
from wikigen.generation.models import GeneratedPage, PlannedPage, TokenUsage, WikiPlan
from wikigen.generation.prompts import SYSTEM_PROMPT, get_page_prompt
from wikigen.generation.retry import RetryPolicy, retry_with_backoff
from wikigen.llm.client import LLMRateLimitError

logger = logging.getLogger(__name__)


def extract_summary(content: str, title: str, max_length: int = SUMMARY_MAX_LENGTH) -> str:
    """Take the first prose paragraph of a page as its summary.

    Paragraphs are separated by blank lines; those starting with a heading
    marker are skipped. Falls back to the title.
    """
    for paragraph in content.split("\n\n"):
        text = paragraph.strip()
        if text and not text.startswith("#"):
            return text[:max_length]
    return title


class PageGenerator:
    """Generates a single page given its already-generated dependencies."""

    def __init__(
        self,
        llm_client,
        retry_policy: RetryPolicy | None = None,
        summary_length: int = SUMMARY_MAX_LENGTH,
    ):
        self.llm_client = llm_client
        self.retry_policy = retry_policy or RetryPolicy()
        self.summary_length = summary_length

    async def generate(
        self,
        cache_handle: str,
        page: PlannedPage,
        generated: Mapping[str, GeneratedPage],
        plan: WikiPlan,
        usage: TokenUsage | None = None,
        cancel_event=None,
    ) -> GeneratedPage:
        """Generate one page.

        Args:
            cache_handle: Context cache handle holding the codebase.
            page: The planned page.
            generated: Pages finished so far, keyed by slug. Only the entries
                named in page.depends_on are inlined into the prompt.
            plan: Full plan, listed for cross-linking.
            usage: Optional accumulator for token usage.
            cancel_event: Optional asyncio.Event that aborts retries.

        Returns:
            The generated page.

        Raises:
            GenerationError: The model call failed after retries.
            GenerationCancelled: cancel_event fired.
        """
        dependencies = [
            generated[slug] for slug in sorted(page.depends_on) if slug in generated
        ]
        prompt = get_page_prompt(page, plan, dependencies)

        try:
            response = await retry_with_backoff(
                lambda: self.llm_client.complete(
                    prompt, system_prompt=SYSTEM_PROMPT, cached_content=cache_handle
                ),
                self.retry_policy,
                cancel_event=cancel_event,
            )
        except GenerationCancelled:
            raise
        except LLMRateLimitError as e:
            raise GenerationError(
                f"Failed to generate page {page.slug}: {e}", slug=page.slug, rate_limited=True
            ) from e
        except Exception as e:
            raise GenerationError(
                f"Failed to generate page {page.slug}: {e}",
                slug=page.slug,
                rate_limited=self.retry_policy.is_retryable(e),
            ) from e

        if usage is not None:
            usage.add(response.input_tokens, response.output_tokens)

        content = response.text.strip()
        logger.info(f"Generated page {page.slug} ({len(content)} characters)")
        return GeneratedPage(
            slug=page.slug,
            title=page.title,
            content=content,
            url=page.url,
            summary=extract_summary(content, page.title, self.summary_length),
        )
