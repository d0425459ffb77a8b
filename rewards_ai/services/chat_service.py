"""
Chat service: cache, retrieval, routing, generation and bookkeeping.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Union

from sqlalchemy.ext.asyncio import async_sessionmaker

from rewards_ai.config import get_settings
from rewards_ai.core.embeddings import EmbeddingService
from rewards_ai.core.exceptions import InvalidChatRequest
from rewards_ai.core.follow_up import FollowUpGenerator
from rewards_ai.core.gateway import ModelGateway
from rewards_ai.core.metrics import EvaluationLogger, EvaluationRecord, TokenUsageRecord
from rewards_ai.core.model_router import calculate_cost, select_model
from rewards_ai.core.prompts import build_system_prompt
from rewards_ai.core.retrieval import ContextAggregator, RetrievedContext, build_context_section
from rewards_ai.core.semantic_cache import CacheEntry, SemanticCache
from rewards_ai.core.stream_relay import SSEAccumulator, StreamRelay, sse_frame
from rewards_ai.db.database import async_session_maker
from rewards_ai.models.schemas import ChatRequest, ChatResponse

logger = logging.getLogger(__name__)


@dataclass
class StreamingChat:
    """A fresh generation being streamed to the client."""

    body: AsyncIterator[bytes]
    model: str
    finalize: Optional[Callable[[], Awaitable[None]]] = None


@dataclass
class Generation:
    """Everything bookkeeping needs to know about one fresh generation."""

    query: str
    user_id: Optional[str]
    task_type: str
    model: str
    started: float
    context: List[str] = field(default_factory=list)

    @property
    def latency_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)


class ChatService:
    """
    Handle one chat request end to end.

    Pipeline:
    1. Response cache (exact hash, then semantic similarity)
    2. On miss: multi-source context retrieval
    3. Model routing by task type and context size
    4. Gateway call, streamed through StreamRelay or buffered
    5. Cache store, usage and evaluation logs, follow-up questions
    """

    def __init__(
        self,
        cache: SemanticCache,
        aggregator: ContextAggregator,
        gateway: ModelGateway,
        evaluation_logger: EvaluationLogger,
        follow_ups: FollowUpGenerator,
        cache_enabled: Optional[bool] = None,
    ):
        settings = get_settings()
        self.cache = cache
        self.aggregator = aggregator
        self.gateway = gateway
        self.evaluation_logger = evaluation_logger
        self.follow_ups = follow_ups
        self.cache_enabled = (
            settings.query_cache_enabled if cache_enabled is None else cache_enabled
        )

    async def handle(self, request: ChatRequest) -> Union[ChatResponse, StreamingChat]:
        """
        Answer a chat request.

        Cache hits are always returned as a ChatResponse. Fresh generations
        are streamed when ``request.stream`` is set.

        Raises:
            InvalidChatRequest: the last message is empty
            UpstreamRateLimited, UpstreamQuotaExhausted, UpstreamError
        """
        started = time.perf_counter()
        query = request.query.strip()
        if not query:
            raise InvalidChatRequest("The last message must have content.")

        logger.info(f"Processing {request.taskType} query: {query[:50]}...")

        if self.cache_enabled:
            cached = await self.cache.lookup(query, request.userId)
            if cached:
                return await self._serve_cached(request, query, cached)

        if request.includeContext:
            context = await self.aggregator.retrieve(
                query, request.userId, request.selectedCardId
            )
        else:
            context = RetrievedContext()

        context_section = build_context_section(context)
        selection = select_model(request.taskType, len(context_section))
        logger.info(f"Selected model: {selection.model} ({selection.reason})")

        messages = [
            {"role": "system", "content": build_system_prompt(request.taskType, context_section)},
            *(message.model_dump() for message in request.messages),
        ]
        generation = Generation(
            query=query,
            user_id=request.userId,
            task_type=request.taskType,
            model=selection.model,
            started=started,
            context=context.snippets(),
        )

        if request.stream:
            return await self._stream(generation, messages)

        completion = await self.gateway.complete(selection.model, messages)
        await self.record_generation(
            generation,
            completion.content,
            completion.tokens_input,
            completion.tokens_output,
        )
        follow_ups = await self.follow_ups.generate(query, completion.content, generation.context)

        return ChatResponse(
            content=completion.content,
            model=selection.model,
            cached=False,
            followUpQuestions=follow_ups,
        )

    async def _serve_cached(
        self,
        request: ChatRequest,
        query: str,
        cached: CacheEntry,
    ) -> ChatResponse:
        """Return a cached answer and log a zero-cost usage row."""
        await self.evaluation_logger.log_usage(
            TokenUsageRecord(
                user_id=request.userId,
                model=cached.model_used,
                tokens_input=0,
                tokens_output=0,
                estimated_cost=0.0,
                query_type=request.taskType,
                cache_hit=True,
            )
        )
        follow_ups = await self.follow_ups.generate(query, cached.response, [])

        return ChatResponse(
            content=cached.response,
            model=cached.model_used,
            cached=True,
            semanticMatch=cached.semantic_match,
            similarity=round(cached.similarity, 4),
            followUpQuestions=follow_ups,
        )

    async def _stream(self, generation: Generation, messages: list) -> StreamingChat:
        """Open the upstream stream and wrap it in a relay."""
        response = await self.gateway.open_stream(generation.model, messages)

        async def on_complete(accumulator: SSEAccumulator) -> None:
            await self.record_generation(
                generation,
                accumulator.full_text,
                accumulator.tokens_input,
                accumulator.tokens_output,
            )

        async def trailer(accumulator: SSEAccumulator) -> bytes:
            questions = await self.follow_ups.generate(
                generation.query, accumulator.full_text, generation.context
            )
            return sse_frame({"followUpQuestions": questions})

        relay = StreamRelay(
            response.aiter_bytes(),
            on_complete=on_complete,
            trailer=trailer,
            on_close=response.aclose,
        )
        return StreamingChat(
            body=relay.relay(), model=generation.model, finalize=relay.finalize
        )

    async def record_generation(
        self,
        generation: Generation,
        text: str,
        tokens_input: int,
        tokens_output: int,
    ) -> None:
        """Cache the answer and write usage and evaluation rows. Never raises."""
        latency_ms = generation.latency_ms
        cost = calculate_cost(generation.model, tokens_input, tokens_output)
        scores = self.evaluation_logger.score(generation.query, text, generation.context)

        if self.cache_enabled and text.strip():
            await self.cache.store(
                generation.query,
                text,
                generation.model,
                tokens_input,
                tokens_output,
                user_id=generation.user_id,
            )

        await self.evaluation_logger.log_usage(
            TokenUsageRecord(
                user_id=generation.user_id,
                model=generation.model,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                estimated_cost=cost,
                query_type=generation.task_type,
                cache_hit=False,
            )
        )
        await self.evaluation_logger.log_evaluation(
            EvaluationRecord(
                user_id=generation.user_id,
                query=generation.query,
                response=text,
                faithfulness_score=scores.faithfulness,
                relevance_score=scores.relevance,
                model_used=generation.model,
                latency_ms=latency_ms,
                context_used=generation.context,
            )
        )

        logger.info(
            f"Response completed: {tokens_output} tokens, {latency_ms}ms, "
            f"cost: ${cost:.6f}"
        )


def create_chat_service(
    gateway: ModelGateway,
    session_factory: async_sessionmaker = async_session_maker,
) -> ChatService:
    """
    Wire a ChatService from its collaborators.

    Args:
        gateway: Shared model gateway
        session_factory: Session factory for cache, retrieval and logs

    Returns:
        ChatService instance
    """
    embedding_service = EmbeddingService()
    return ChatService(
        cache=SemanticCache(session_factory, embedding_service),
        aggregator=ContextAggregator(session_factory, embedding_service),
        gateway=gateway,
        evaluation_logger=EvaluationLogger(session_factory),
        follow_ups=FollowUpGenerator(gateway),
    )
