"""
Credit card registry and transaction ledger models.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import Date, DateTime, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from rewards_ai.db.database import Base


class CreditCardModel(Base):
    """A card registered by a user, with its current points balance."""

    __tablename__ = "credit_cards"

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
    bank_name: Mapped[str] = mapped_column(
        String,
        nullable=False,
    )
    card_name: Mapped[str] = mapped_column(
        String,
        nullable=False,
    )
    last_four: Mapped[Optional[str]] = mapped_column(
        String(4),
        nullable=True,
    )
    points: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    point_value: Mapped[Decimal] = mapped_column(
        Numeric(10, 4),
        nullable=False,
        default=Decimal("0.40"),
    )
    """Rupee value of a single point"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        onupdate=func.now(),
    )


class TransactionModel(Base):
    """A parsed statement transaction."""

    __tablename__ = "transactions"

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
    card_id: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        index=True,
    )
    transaction_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    category: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
    )
    points_earned: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    merchant_name: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
    )
