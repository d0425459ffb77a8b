"""
Usage and quality telemetry.

Quality scores are a token-overlap heuristic, not an LLM judge. Any object
implementing ``Scorer`` can replace it without touching callers.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Optional, Protocol, Sequence

from sqlalchemy.ext.asyncio import async_sessionmaker

from rewards_ai.core.exceptions import PersistenceFailure
from rewards_ai.db.models import AIEvaluationModel, TokenUsageModel

logger = logging.getLogger(__name__)

MAX_CONTEXT_SNIPPETS = 5
GROUNDING_RATIO = 0.3
"""Share of grounded response tokens that already scores 1.0 faithfulness."""


@dataclass(frozen=True)
class QualityScores:
    faithfulness: float
    relevance: float


class Scorer(Protocol):
    def score(
        self, query: str, response: str, context: Sequence[str]
    ) -> QualityScores: ...


class HeuristicScorer:
    """Token-overlap approximation of faithfulness and relevance."""

    def score(self, query: str, response: str, context: Sequence[str]) -> QualityScores:
        """
        Score a response.

        faithfulness: response tokens found in the context, scaled so that
        30% grounding already reaches 1.0.
        relevance: response tokens that echo query tokens, doubled and
        divided by the number of distinct query tokens.
        """
        context_words = set(" ".join(context).lower().split())
        response_words = response.lower().split()
        query_words = set(query.lower().split())

        grounded = sum(1 for w in response_words if w in context_words)
        faithfulness = min(1.0, grounded / max(len(response_words) * GROUNDING_RATIO, 1))

        echoed = sum(1 for w in response_words if w in query_words)
        relevance = min(1.0, (echoed * 2) / max(len(query_words), 1))

        return QualityScores(
            faithfulness=round(faithfulness, 2),
            relevance=round(relevance, 2),
        )


@dataclass
class TokenUsageRecord:
    user_id: Optional[str]
    model: str
    tokens_input: int
    tokens_output: int
    estimated_cost: float
    query_type: str
    cache_hit: bool


@dataclass
class EvaluationRecord:
    user_id: Optional[str]
    query: str
    response: str
    faithfulness_score: float
    relevance_score: float
    model_used: str
    latency_ms: int
    context_used: List[str] = field(default_factory=list)


class EvaluationLogger:
    """
    Append-only writer for token usage and evaluation rows.

    Writes never raise: a telemetry failure must not fail the request.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        scorer: Optional[Scorer] = None,
    ):
        self.session_factory = session_factory
        self.scorer = scorer or HeuristicScorer()

    def score(self, query: str, response: str, context: Sequence[str]) -> QualityScores:
        return self.scorer.score(query, response, context)

    async def log_usage(self, record: TokenUsageRecord) -> None:
        """Insert one token_usage row."""
        try:
            await self._insert(
                TokenUsageModel(
                    user_id=record.user_id,
                    model=record.model,
                    tokens_input=record.tokens_input,
                    tokens_output=record.tokens_output,
                    estimated_cost=Decimal(str(round(record.estimated_cost, 6))),
                    query_type=record.query_type,
                    cache_hit=record.cache_hit,
                )
            )
        except PersistenceFailure as e:
            logger.error(str(e))

    async def log_evaluation(self, record: EvaluationRecord) -> None:
        """Insert one ai_evaluations row. Only called for fresh generations."""
        try:
            await self._insert(
                AIEvaluationModel(
                    user_id=record.user_id,
                    query=record.query,
                    response=record.response,
                    context_used=list(record.context_used[:MAX_CONTEXT_SNIPPETS]),
                    faithfulness_score=Decimal(str(record.faithfulness_score)),
                    relevance_score=Decimal(str(record.relevance_score)),
                    model_used=record.model_used,
                    latency_ms=record.latency_ms,
                )
            )
        except PersistenceFailure as e:
            logger.error(str(e))

    async def _insert(self, row: Any) -> None:
        try:
            async with self.session_factory() as session:
                session.add(row)
                await session.commit()
        except Exception as e:
            raise PersistenceFailure(f"Failed to write {row.__tablename__} row: {e}") from e
