"""LLM client configuration.

Default parameters for LLM API calls. These can be overridden per-call
but provide sensible defaults for most use cases.
"""

# =============================================================================
# Generation Defaults
# =============================================================================
# MAX_TOKENS caps response length to control costs and ensure responses complete.
# DEFAULT_TEMPERATURE balances creativity and consistency (0.7 is a common default).
# JSON_TEMPERATURE is lower for structured output where consistency matters more.

MAX_TOKENS = 8192
DEFAULT_TEMPERATURE = 0.7
JSON_TEMPERATURE = 0.3

# =============================================================================
# Token Estimation
# =============================================================================
# Providers do not always report usage (local models, some cached calls). When
# they don't, token counts are estimated from character counts. CHARS_PER_TOKEN
# is the usual rough figure for English prose and source code.

CHARS_PER_TOKEN = 4

# =============================================================================
# Context Caching
# =============================================================================
# The codebase is registered once per run and referenced by handle on every
# later call. CONTEXT_CACHE_SYSTEM_INSTRUCTION is attached to the cached
# document. INLINE_CACHE_PREFIX marks handles held in-process for providers
# without a cached-content API.

CONTEXT_CACHE_TTL_SECONDS = 3600
CONTEXT_CACHE_SYSTEM_INSTRUCTION = (
    "You are a documentation generator. This cached content contains a complete "
    "codebase for wiki generation."
)
INLINE_CACHE_PREFIX = "inline/"

# =============================================================================
# Provider Defaults
# =============================================================================
# Model used when a provider is selected without naming a model.

PROVIDER_DEFAULT_MODELS = {
    "google": "gemini-2.5-flash",
    "openai": "gpt-4o",
    "anthropic": "claude-3-5-sonnet-20241022",
    "ollama": "llama3",
}
