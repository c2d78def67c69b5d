"""Pipeline error taxonomy.

Rate limiting is signalled by ``wikigen.llm.LLMRateLimitError`` and handled by
the retry wrapper; everything here is fatal to a run.
"""


class WikiGenerationError(Exception):
    """Base exception for wiki generation failures."""

    pass


class CacheCreationError(WikiGenerationError):
    """Raised when the codebase context could not be registered."""

    pass


class PlanParseError(WikiGenerationError):
    """Raised when the planner's response holds no usable JSON plan.

    Attributes:
        response: The raw model output, for diagnostics.
    """

    def __init__(self, message: str, response: str = ""):
        super().__init__(message)
        self.response = response


class GenerationError(WikiGenerationError):
    """Raised when a page could not be generated.

    Attributes:
        slug: Slug of the page that failed.
        rate_limited: True when the failure was a rate limit that outlived
            every retry.
    """

    def __init__(self, message: str, slug: str, rate_limited: bool = False):
        super().__init__(message)
        self.slug = slug
        self.rate_limited = rate_limited


class GenerationCancelled(WikiGenerationError):
    """Raised when a run is cancelled before it finishes."""

    pass
