"""FastAPI dependency injection functions."""

from functools import lru_cache

from wikigen.config import Config, load_settings
from wikigen.generation.orchestrator import WikiGenerationPipeline
from wikigen.llm.client import LLMClient

_llm_instance: LLMClient | None = None


@lru_cache
def get_settings() -> Config:
    """Get cached application settings."""
    return load_settings()


def get_llm() -> LLMClient:
    """Get LLM client instance."""
    global _llm_instance
    if _llm_instance is None:
        settings = get_settings()
        _llm_instance = LLMClient(
            provider=settings.llm_provider,
            model=settings.llm_model,
            api_key=settings.llm_api_key,
            endpoint=settings.llm_endpoint,
            log_path=settings.llm_log_path,
        )
    return _llm_instance


def _reset_llm_instance() -> None:
    """Reset LLM client instance (for testing only)."""
    global _llm_instance
    _llm_instance = None


def get_pipeline() -> WikiGenerationPipeline:
    """Build a generation pipeline from the current settings."""
    return WikiGenerationPipeline.from_settings(get_llm(), get_settings())
