"""
Multi-source context retrieval for the chat prompt.

Sources:
- User statement chunks (vector search, or plain listing when degraded)
- Shared card benefits knowledge base (same)
- Transaction ledger aggregated by category
- Card registry with estimated point values

Each source runs in its own session and fails independently.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewards_ai.config import get_settings
from rewards_ai.core.embeddings import EmbeddingService
from rewards_ai.core.exceptions import DependencyUnavailable
from rewards_ai.db.models import (
    CardBenefitModel,
    CreditCardModel,
    DocumentChunkModel,
    TransactionModel,
)

logger = logging.getLogger(__name__)

NO_CONTEXT_NOTICE = (
    "RELEVANT CONTEXT:\n"
    "No user data available. The user has not uploaded statements or added cards yet. "
    "Answer with general credit card rewards guidance and suggest uploading a statement "
    "for personalized insights."
)
SECTION_SEPARATOR = "\n\n---\n\n"


@dataclass
class RetrievedContext:
    """Context assembled for one request."""

    document_chunks: List[str] = field(default_factory=list)
    benefits_context: List[str] = field(default_factory=list)
    transaction_summary: Optional[str] = None
    user_cards: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (
            self.document_chunks
            or self.benefits_context
            or self.transaction_summary
            or self.user_cards
        )

    def snippets(self) -> List[str]:
        """All context pieces in prompt order."""
        pieces: List[str] = []
        if self.user_cards:
            pieces.append(self.user_cards)
        pieces.extend(self.document_chunks)
        if self.transaction_summary:
            pieces.append(self.transaction_summary)
        pieces.extend(self.benefits_context)
        return pieces


class ContextAggregator:
    """
    Fan-out retrieval across the user's data and the benefits knowledge base.

    Usage:
        aggregator = ContextAggregator(async_session_maker, EmbeddingService())
        context = await aggregator.retrieve(query, user_id)
        section = build_context_section(context)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        embedding_service: EmbeddingService,
        match_count: Optional[int] = None,
        fallback_limit: Optional[int] = None,
        transaction_limit: Optional[int] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.embedding_service = embedding_service
        self.match_count = match_count or settings.retrieval_match_count
        self.fallback_limit = fallback_limit or settings.retrieval_fallback_limit
        self.transaction_limit = transaction_limit or settings.transaction_summary_limit

    async def retrieve(
        self,
        query: str,
        user_id: Optional[str],
        selected_card_id: Optional[str] = None,
    ) -> RetrievedContext:
        """
        Retrieve context from all sources concurrently.

        Args:
            query: User's question
            user_id: Owner of documents, transactions and cards (None = anonymous)
            selected_card_id: Restrict the card registry to one card

        Returns:
            RetrievedContext, with empty fields for failed or unavailable sources
        """
        embedding = await self.embedding_service.get_embedding(query)
        if not embedding:
            logger.warning("Query embedding unavailable, using non-vector retrieval")

        documents, benefits, transactions, cards = await asyncio.gather(
            self._guard("documents", self.search_documents(user_id, embedding), []),
            self._guard("benefits", self.search_benefits(embedding), []),
            self._guard("transactions", self.get_transaction_summary(user_id), None),
            self._guard("cards", self.get_user_cards(user_id, selected_card_id), None),
        )

        logger.info(
            f"Retrieved context: {len(documents)} docs, {len(benefits)} benefits, "
            f"transactions={'yes' if transactions else 'no'}, cards={'yes' if cards else 'no'}"
        )

        return RetrievedContext(
            document_chunks=documents,
            benefits_context=benefits,
            transaction_summary=transactions,
            user_cards=cards,
        )

    @staticmethod
    async def _guard(source: str, retrieval: Awaitable[Any], default: Any) -> Any:
        """Substitute the empty result when a source fails."""
        try:
            return await retrieval
        except DependencyUnavailable as e:
            logger.error(str(e))
        except Exception:
            logger.exception(f"Context source '{source}' failed")
        return default

    @asynccontextmanager
    async def _session(self, source: str) -> AsyncIterator[AsyncSession]:
        """Session for one source; database errors become DependencyUnavailable."""
        try:
            async with self.session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            raise DependencyUnavailable(f"Context source '{source}' unavailable: {e}") from e

    async def search_documents(
        self,
        user_id: Optional[str],
        embedding: List[float],
    ) -> List[str]:
        """User statement chunks, most similar first."""
        if not user_id:
            return []

        async with self._session("documents") as session:
            if embedding:
                similarity = (
                    1 - DocumentChunkModel.embedding.cosine_distance(embedding)
                ).label("similarity")
                result = await session.execute(
                    select(DocumentChunkModel.chunk_text, similarity)
                    .where(
                        DocumentChunkModel.user_id == user_id,
                        DocumentChunkModel.embedding.is_not(None),
                    )
                    .order_by(DocumentChunkModel.embedding.cosine_distance(embedding))
                    .limit(self.match_count)
                )
                return [
                    f"[Relevance: {_percent(row.similarity)}%] {row.chunk_text}"
                    for row in result.all()
                ]

            result = await session.execute(
                select(DocumentChunkModel.chunk_text)
                .where(DocumentChunkModel.user_id == user_id)
                .order_by(DocumentChunkModel.created_at.desc(), DocumentChunkModel.chunk_index)
                .limit(self.fallback_limit)
            )
            return [row.chunk_text for row in result.all()]

    async def search_benefits(self, embedding: List[float]) -> List[str]:
        """Active benefits from the shared knowledge base."""
        columns = (
            CardBenefitModel.bank_name,
            CardBenefitModel.card_name,
            CardBenefitModel.benefit_title,
            CardBenefitModel.benefit_description,
        )

        async with self._session("benefits") as session:
            if embedding:
                similarity = (
                    1 - CardBenefitModel.embedding.cosine_distance(embedding)
                ).label("similarity")
                result = await session.execute(
                    select(*columns, similarity)
                    .where(
                        CardBenefitModel.is_active.is_(True),
                        CardBenefitModel.embedding.is_not(None),
                    )
                    .order_by(CardBenefitModel.embedding.cosine_distance(embedding))
                    .limit(self.match_count)
                )
                return [
                    f"[Match: {_percent(row.similarity)}%] {_format_benefit(row)}"
                    for row in result.all()
                ]

            result = await session.execute(
                select(*columns)
                .where(CardBenefitModel.is_active.is_(True))
                .order_by(CardBenefitModel.bank_name, CardBenefitModel.card_name)
                .limit(self.fallback_limit)
            )
            return [_format_benefit(row) for row in result.all()]

    async def get_transaction_summary(self, user_id: Optional[str]) -> Optional[str]:
        """Spending aggregated by category as a compact JSON summary."""
        if not user_id:
            return None

        async with self._session("transactions") as session:
            result = await session.execute(
                select(
                    TransactionModel.category,
                    TransactionModel.amount,
                    TransactionModel.points_earned,
                )
                .where(TransactionModel.user_id == user_id)
                .order_by(TransactionModel.transaction_date.desc())
                .limit(self.transaction_limit)
            )
            rows = result.all()

        if not rows:
            return None

        summary = summarize_transactions(
            (row.category, row.amount, row.points_earned) for row in rows
        )
        return "User spending summary by category: " + json.dumps(
            summary, separators=(",", ":"), ensure_ascii=False
        )

    async def get_user_cards(
        self,
        user_id: Optional[str],
        selected_card_id: Optional[str] = None,
    ) -> Optional[str]:
        """The user's cards with points and estimated value."""
        if not user_id:
            return None

        query = select(CreditCardModel).where(CreditCardModel.user_id == user_id)
        if selected_card_id:
            query = query.where(CreditCardModel.id == selected_card_id)

        async with self._session("cards") as session:
            result = await session.execute(
                query.order_by(CreditCardModel.bank_name, CreditCardModel.card_name)
            )
            cards = result.scalars().all()

        if not cards:
            return None

        return "\n".join(format_card(card) for card in cards)


def summarize_transactions(
    rows: Iterable[Tuple[Optional[str], Any, Optional[int]]],
) -> Dict[str, Dict[str, Any]]:
    """
    Group (category, amount, points) rows by category.

    Amounts are summed as absolute values so refunds and debits both
    count as spend.
    """
    summary: Dict[str, Dict[str, Any]] = {}
    for category, amount, points in rows:
        bucket = summary.setdefault(
            category or "Uncategorized", {"amount": 0.0, "points": 0, "count": 0}
        )
        bucket["amount"] += abs(float(amount or 0))
        bucket["points"] += int(points or 0)
        bucket["count"] += 1

    for bucket in summary.values():
        bucket["amount"] = round(bucket["amount"], 2)
    return summary


def format_card(card: CreditCardModel) -> str:
    """One registry line: name, masked number, points and rupee value."""
    points = card.points or 0
    point_value = card.point_value if card.point_value is not None else Decimal("0")
    value = Decimal(points) * Decimal(str(point_value))
    masked = f" (****{card.last_four})" if card.last_four else ""
    return (
        f"- {card.bank_name} {card.card_name}{masked}: "
        f"{points:,} points (est. value ₹{value:,.2f})"
    )


def build_context_section(context: RetrievedContext) -> str:
    """
    Render context for the system prompt.

    Order is fixed: cards, statement data, spending patterns, benefits.
    Never returns an empty string.
    """
    sections: List[str] = []

    if context.user_cards:
        sections.append("## Your Cards\n" + context.user_cards)

    if context.document_chunks:
        sections.append("## Your Statement Data\n" + "\n\n".join(context.document_chunks))

    if context.transaction_summary:
        sections.append("## Spending Patterns\n" + context.transaction_summary)

    if context.benefits_context:
        sections.append("## Card Benefits\n" + "\n\n".join(context.benefits_context))

    if not sections:
        return NO_CONTEXT_NOTICE

    return "RELEVANT CONTEXT:\n" + SECTION_SEPARATOR.join(sections)


def _percent(similarity: Any) -> int:
    return round(float(similarity) * 100)


def _format_benefit(row: Any) -> str:
    return f"{row.bank_name} {row.card_name}: {row.benefit_title} - {row.benefit_description}"
