"""
Append-only usage and evaluation logs.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from rewards_ai.db.database import Base


class TokenUsageModel(Base):
    """One row per chat request, cache hits included."""

    __tablename__ = "token_usage"

    id: Mapped[str] = mapped_column(
        String,
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        index=True,
    )
    model: Mapped[str] = mapped_column(
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
    estimated_cost: Mapped[Decimal] = mapped_column(
        Numeric(10, 6),
        nullable=False,
        default=Decimal("0"),
    )
    """USD"""
    query_type: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default="chat",
    )
    cache_hit: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class AIEvaluationModel(Base):
    """Heuristic quality scores for fresh generations."""

    __tablename__ = "ai_evaluations"

    id: Mapped[str] = mapped_column(
        String,
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        index=True,
    )
    query: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    response: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    context_used: Mapped[Optional[list]] = mapped_column(
        ARRAY(Text),
        nullable=True,
    )
    faithfulness_score: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(3, 2),
        nullable=True,
    )
    relevance_score: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(3, 2),
        nullable=True,
    )
    user_feedback: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )
    """1-5 rating, filled in later by the dashboard"""
    model_used: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
    )
    latency_ms: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
