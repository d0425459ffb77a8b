"""
Response caching with semantic deduplication.

Features:
1. Exact match caching via query hash
2. Semantic similarity caching (paraphrased questions = same answer)
3. TTL-based expiration

Writes are at-least-once: two concurrent misses for the same query both
insert a row, and lookups return whichever valid row they find first.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewards_ai.config import get_settings
from rewards_ai.core.embeddings import EmbeddingService
from rewards_ai.db.models.cache import QueryCacheModel

logger = logging.getLogger(__name__)

SEMANTIC_CACHE_THRESHOLD = 0.92
"""Default cosine similarity a cached query must reach to count as a hit."""


@dataclass
class CacheEntry:
    """A cached response returned by a lookup."""

    id: str
    query_text: str
    response: str
    model_used: str
    tokens_input: int
    tokens_output: int
    hit_count: int
    similarity: float

    @property
    def semantic_match(self) -> bool:
        """True when the hit came from the vector search."""
        return self.similarity < 1.0


class SemanticCache:
    """
    Response cache with exact and semantic matching.

    Usage:
        cache = SemanticCache(async_session_maker, EmbeddingService())

        entry = await cache.lookup(query)
        if entry:
            return entry.response  # Cache hit!

        # ... generate a fresh response ...

        await cache.store(query, response, model, tokens_in, tokens_out)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        embedding_service: EmbeddingService,
        ttl_days: Optional[int] = None,
        semantic_threshold: Optional[float] = None,
        per_user: Optional[bool] = None,
    ):
        """
        Initialize the cache.

        Args:
            session_factory: Factory producing AsyncSession instances
            embedding_service: Provider for query embeddings
            ttl_days: Days until an entry expires (default from settings)
            semantic_threshold: Similarity threshold for semantic matching
            per_user: Scope rows to the requesting user instead of sharing them
        """
        settings = get_settings()
        self.session_factory = session_factory
        self.embedding_service = embedding_service
        self.ttl_days = ttl_days or settings.query_cache_ttl_days
        self.semantic_threshold = (
            semantic_threshold or settings.semantic_cache_threshold
        )
        self.per_user = settings.semantic_cache_per_user if per_user is None else per_user

    async def lookup(
        self,
        query: str,
        user_id: Optional[str] = None,
    ) -> Optional[CacheEntry]:
        """
        Find a cached response for a query.

        Tries the exact hash first (no embedding cost), then the
        approximate vector search. Store errors count as a miss.

        Args:
            query: User's query text
            user_id: Requesting user, only used when per-user scope is on

        Returns:
            CacheEntry if found, None otherwise
        """
        scope = self._scope(user_id)
        try:
            async with self.session_factory() as session:
                entry = await self._get_exact(session, query, scope)
                if entry is None:
                    embedding = await self.embedding_service.get_embedding(query)
                    if not embedding:
                        logger.debug("No query embedding, skipping semantic cache lookup")
                        return None
                    entry = await self._get_semantic(session, embedding, scope)
                if entry is not None:
                    await session.commit()
                return entry
        except Exception as e:
            logger.error(f"Cache lookup failed: {e}")
            return None

    async def _get_exact(
        self,
        session: AsyncSession,
        query: str,
        scope: Optional[str],
    ) -> Optional[CacheEntry]:
        """Exact hash match among non-expired rows."""
        query_hash = self.compute_query_hash(query)
        now = datetime.now(timezone.utc)

        result = await session.execute(
            select(QueryCacheModel)
            .where(
                QueryCacheModel.query_hash == query_hash,
                QueryCacheModel.expires_at > now,
                self._scope_filter(scope),
            )
            .order_by(QueryCacheModel.created_at.desc())
            .limit(1)
        )
        cached = result.scalars().first()

        if cached is None:
            return None

        await self._increment_hit_count(session, cached.id)
        logger.info(f"Cache hit (exact) for query hash {query_hash[:8]}...")

        return CacheEntry(
            id=cached.id,
            query_text=cached.query_text,
            response=cached.response,
            model_used=cached.model_used,
            tokens_input=cached.tokens_input,
            tokens_output=cached.tokens_output,
            hit_count=cached.hit_count + 1,
            similarity=1.0,
        )

    async def _get_semantic(
        self,
        session: AsyncSession,
        embedding: List[float],
        scope: Optional[str],
    ) -> Optional[CacheEntry]:
        """Accept the nearest cached query only if it clears the threshold."""
        matches = await self.find_similar(
            session,
            embedding,
            similarity_threshold=self.semantic_threshold,
            max_results=1,
            scope=scope,
        )
        if not matches:
            return None

        cached, similarity = matches[0]
        if similarity < self.semantic_threshold:
            return None

        await self._increment_hit_count(session, cached.id)
        logger.info(f"Cache hit (semantic) with similarity {similarity:.3f}")

        return CacheEntry(
            id=cached.id,
            query_text=cached.query_text,
            response=cached.response,
            model_used=cached.model_used,
            tokens_input=cached.tokens_input,
            tokens_output=cached.tokens_output,
            hit_count=cached.hit_count + 1,
            similarity=similarity,
        )

    async def find_similar(
        self,
        session: AsyncSession,
        embedding: List[float],
        similarity_threshold: float,
        max_results: int = 1,
        scope: Optional[str] = None,
    ) -> List[tuple[QueryCacheModel, float]]:
        """
        Nearest-neighbour search over non-expired cached queries.

        Returns:
            (row, cosine similarity) pairs, most similar first
        """
        now = datetime.now(timezone.utc)
        similarity = (
            1 - QueryCacheModel.query_embedding.cosine_distance(embedding)
        ).label("similarity")

        result = await session.execute(
            select(QueryCacheModel, similarity)
            .where(
                QueryCacheModel.expires_at > now,
                QueryCacheModel.query_embedding.is_not(None),
                similarity >= similarity_threshold,
                self._scope_filter(scope),
            )
            .order_by(QueryCacheModel.query_embedding.cosine_distance(embedding))
            .limit(max_results)
        )
        return [(row[0], float(row[1])) for row in result.all()]

    async def store(
        self,
        query: str,
        response: str,
        model: str,
        tokens_input: int,
        tokens_output: int,
        user_id: Optional[str] = None,
    ) -> None:
        """
        Store a generated response.

        Always inserts a new row. Failures are logged and swallowed so a
        caching problem never breaks the response.

        Args:
            query: User's query text
            response: Full generated response
            model: Model that produced the response
            tokens_input: Prompt tokens reported by the gateway
            tokens_output: Completion tokens reported by the gateway
            user_id: Requesting user, only stored when per-user scope is on
        """
        try:
            embedding = await self.embedding_service.get_embedding(query)
            now = datetime.now(timezone.utc)

            cache_entry = QueryCacheModel(
                query_hash=self.compute_query_hash(query),
                query_text=query,
                query_embedding=embedding or None,
                user_id=self._scope(user_id),
                response=response,
                model_used=model,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                hit_count=0,
                created_at=now,
                expires_at=now + timedelta(days=self.ttl_days),
            )

            async with self.session_factory() as session:
                session.add(cache_entry)
                await session.commit()

            logger.info(
                f"Cached response from {model} "
                f"({'with' if embedding else 'without'} embedding), "
                f"expires in {self.ttl_days}d"
            )
        except Exception as e:
            logger.error(f"Failed to store response in cache: {e}")

    async def get_stats(self) -> dict:
        """
        Get cache statistics.

        Returns:
            Dict with active_entries and total_hits
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    func.count(QueryCacheModel.id).label("active_entries"),
                    func.coalesce(func.sum(QueryCacheModel.hit_count), 0).label("total_hits"),
                ).where(QueryCacheModel.expires_at > datetime.now(timezone.utc))
            )
            row = result.one()

        return {
            "active_entries": int(row.active_entries),
            "total_hits": int(row.total_hits),
        }

    async def _increment_hit_count(self, session: AsyncSession, cache_id: str) -> None:
        await session.execute(
            update(QueryCacheModel)
            .where(QueryCacheModel.id == cache_id)
            .values(hit_count=QueryCacheModel.hit_count + 1)
        )

    def _scope(self, user_id: Optional[str]) -> Optional[str]:
        return user_id if self.per_user else None

    @staticmethod
    def _scope_filter(scope: Optional[str]):
        if scope is None:
            return QueryCacheModel.user_id.is_(None)
        return QueryCacheModel.user_id == scope

    @staticmethod
    def compute_query_hash(query: str) -> str:
        """SHA-256 of the lowercased, trimmed query."""
        return EmbeddingService.compute_text_hash(query)
