"""
Response cache model for AI chat cost optimization.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from pgvector.sqlalchemy import Vector

from rewards_ai.config import settings
from rewards_ai.db.database import Base


class QueryCacheModel(Base):
    """
    Cache of generated responses with semantic deduplication.

    Enables:
    - Exact hash match for identical queries
    - Semantic similarity match for paraphrased queries
    - TTL-based expiration

    Rows are shared across users unless the per-user scope is enabled,
    in which case ``user_id`` is set. Duplicate hashes are allowed.
    """

    __tablename__ = "query_cache"

    id: Mapped[str] = mapped_column(
        String,
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    # Query identification
    query_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    """SHA256 hash of the lowercased, trimmed query"""
    query_text: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    query_embedding: Mapped[Optional[list]] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )
    """NULL when the embedding provider was unavailable at write time"""
    # Scope
    user_id: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        index=True,
    )
    # Cached response
    response: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    model_used: Mapped[str] = mapped_column(
        String,
        nullable=False,
    )
    tokens_input: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    tokens_output: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    # Metadata
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    hit_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    """Number of cache hits for analytics"""
