"""
API route dependencies.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from rewards_ai.core.embeddings import EmbeddingService
from rewards_ai.core.gateway import ModelGateway
from rewards_ai.core.semantic_cache import SemanticCache
from rewards_ai.db.database import async_session_maker
from rewards_ai.services.chat_service import ChatService, create_chat_service


def get_session_factory() -> async_sessionmaker:
    """Session factory shared by cache, retrieval and telemetry writers."""
    return async_session_maker


def get_gateway(request: Request) -> ModelGateway:
    """Model gateway created at startup, one HTTP pool per process."""
    return request.app.state.gateway


def get_chat_service(
    gateway: Annotated[ModelGateway, Depends(get_gateway)],
    session_factory: Annotated[async_sessionmaker, Depends(get_session_factory)],
) -> ChatService:
    return create_chat_service(gateway, session_factory)


def get_semantic_cache(
    session_factory: Annotated[async_sessionmaker, Depends(get_session_factory)],
) -> SemanticCache:
    return SemanticCache(session_factory, EmbeddingService())


# Dependency annotations
GatewayDep = Annotated[ModelGateway, Depends(get_gateway)]
ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]
SemanticCacheDep = Annotated[SemanticCache, Depends(get_semantic_cache)]
