# backend/src/wikigen/generation/context_cache.py
"""Context cache builder: registers the codebase once per run."""

import logging

from wikigen.constants.llm import CONTEXT_CACHE_SYSTEM_INSTRUCTION, CONTEXT_CACHE_TTL_SECONDS
from wikigen.generation.errors import CacheCreationError
from wikigen.generation.models import RepositorySnapshot
from wikigen.generation.prompts import get_codebase_context
from wikigen.llm.client import ContextCache

logger = logging.getLogger(__name__)


class ContextCacheBuilder:
    """Builds the codebase document and registers it with the model."""

    def __init__(
        self,
        llm_client,
        ttl_seconds: int = CONTEXT_CACHE_TTL_SECONDS,
        system_instruction: str = CONTEXT_CACHE_SYSTEM_INSTRUCTION,
    ):
        """Initialize the builder.

        Args:
            llm_client: LLM client that owns cache registration.
            ttl_seconds: How long the registration should live.
            system_instruction: Instruction attached to the cached document.
        """
        self.llm_client = llm_client
        self.ttl_seconds = ttl_seconds
        self.system_instruction = system_instruction

    async def build(self, snapshot: RepositorySnapshot) -> ContextCache:
        """Register the snapshot's context document.

        Args:
            snapshot: Repository content to embed.

        Returns:
            ContextCache whose name is the opaque handle for later calls.

        Raises:
            CacheCreationError: Registration failed for any reason.
        """
        document = get_codebase_context(snapshot)
        logger.info(
            f"Registering context for {snapshot.full_name}: {len(snapshot.files)} files, "
            f"{len(document)} characters"
        )

        try:
            cache = await self.llm_client.create_context_cache(
                document,
                system_instruction=self.system_instruction,
                ttl_seconds=self.ttl_seconds,
            )
        except Exception as e:
            raise CacheCreationError(f"Failed to create context cache: {e}") from e

        if not cache.name:
            raise CacheCreationError("Context cache registration returned no handle")

        logger.info(f"Context cache created: {cache.name} (~{cache.token_count} tokens)")
        return cache
