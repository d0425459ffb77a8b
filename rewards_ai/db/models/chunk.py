"""
Statement chunk and card benefit models used as retrieval sources.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from pgvector.sqlalchemy import Vector

from rewards_ai.config import settings
from rewards_ai.db.database import Base


class DocumentChunkModel(Base):
    """Text chunks extracted from a user's uploaded statements."""

    __tablename__ = "document_chunks"

    id: Mapped[str] = mapped_column(
        String,
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str] = mapped_column(
        String,
        nullable=False,
        index=True,
    )
    document_id: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        index=True,
    )
    chunk_text: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    chunk_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    embedding: Mapped[Optional[list]] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )


class CardBenefitModel(Base):
    """
    Shared knowledge base of card benefits.

    Not user-scoped: every user's query searches the same active rows.
    """

    __tablename__ = "card_benefits"

    id: Mapped[str] = mapped_column(
        String,
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    bank_name: Mapped[str] = mapped_column(
        String,
        nullable=False,
    )
    card_name: Mapped[str] = mapped_column(
        String,
        nullable=False,
    )
    benefit_category: Mapped[str] = mapped_column(
        String,
        nullable=False,
    )
    benefit_title: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    benefit_description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    conditions: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    value_estimate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2),
        nullable=True,
    )
    embedding: Mapped[Optional[list]] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
