"""
Embedding service for semantic cache and retrieval.

The provider is allowed to be unavailable: every caller must accept an
empty vector and fall back to non-vector behaviour.
"""

import hashlib
import logging
from typing import List, Optional

from rewards_ai.config import get_settings
from rewards_ai.core.exceptions import DependencyDegraded

logger = logging.getLogger(__name__)

_openai_client: Optional["AsyncOpenAI"] = None


def _get_openai_client():
    """Get or create the async OpenAI client."""
    global _openai_client
    if _openai_client is None:
        from openai import AsyncOpenAI

        settings = get_settings()
        _openai_client = AsyncOpenAI(api_key=settings.openai_api_key)
    return _openai_client


class EmbeddingService:
    """
    Generate query embeddings, degrading to an empty vector.

    Usage:
        service = EmbeddingService()
        embedding = await service.get_embedding("How many points did I earn?")
        if not embedding:
            ...  # provider degraded, use plain queries
    """

    def __init__(self, dimensions: Optional[int] = None):
        """
        Initialize embedding service.

        Args:
            dimensions: Target embedding dimension.
                       Defaults to settings.embedding_dimensions.
        """
        settings = get_settings()
        self.dimensions = dimensions or settings.embedding_dimensions
        self.model = settings.openai_embedding_model
        self.provider = settings.embedding_provider.strip().lower()
        self._client = None

    @property
    def client(self):
        """Lazy-load the OpenAI client."""
        if self._client is None:
            self._client = _get_openai_client()
        return self._client

    @property
    def available(self) -> bool:
        """Whether an embedding request is worth attempting at all."""
        settings = get_settings()
        return self.provider == "openai" and bool(settings.openai_api_key)

    async def embed(self, text: str) -> List[float]:
        """
        Generate an embedding for text.

        Args:
            text: Input text to embed

        Returns:
            Embedding vector

        Raises:
            DependencyDegraded: provider disabled, misconfigured or failing
        """
        if not text.strip():
            raise DependencyDegraded("Cannot embed empty text")
        if not self.available:
            raise DependencyDegraded(f"Embedding provider '{self.provider}' is not configured")

        settings = get_settings()

        try:
            if settings.use_matryoshka:
                response = await self.client.embeddings.create(
                    input=text,
                    model=self.model,
                    dimensions=self.dimensions,
                )
            else:
                response = await self.client.embeddings.create(
                    input=text,
                    model=self.model,
                )
        except Exception as e:
            raise DependencyDegraded(f"Embedding provider unavailable: {e}") from e

        if not response.data:
            raise DependencyDegraded("Embedding provider returned no data")
        return list(response.data[0].embedding)

    async def get_embedding(self, text: str) -> List[float]:
        """Like ``embed``, but returns an empty list instead of raising."""
        try:
            return await self.embed(text)
        except DependencyDegraded as e:
            logger.warning(str(e))
            return []

    @staticmethod
    def compute_text_hash(text: str) -> str:
        """
        Compute SHA256 hash of normalized text.

        Normalizes text before hashing:
        - Strips whitespace
        - Converts to lowercase

        Args:
            text: Input text

        Returns:
            64-character hex hash string
        """
        normalized = text.strip().lower()
        return hashlib.sha256(normalized.encode()).hexdigest()
