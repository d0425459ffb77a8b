"""
SQLAlchemy ORM models package.

Re-exports all models for convenient imports.
"""

from rewards_ai.db.models.cache import QueryCacheModel
from rewards_ai.db.models.card import CreditCardModel, TransactionModel
from rewards_ai.db.models.chunk import CardBenefitModel, DocumentChunkModel
from rewards_ai.db.models.telemetry import AIEvaluationModel, TokenUsageModel

__all__ = [
    # Cache
    "QueryCacheModel",
    # Retrieval sources
    "DocumentChunkModel",
    "CardBenefitModel",
    "CreditCardModel",
    "TransactionModel",
    # Telemetry
    "TokenUsageModel",
    "AIEvaluationModel",
]
