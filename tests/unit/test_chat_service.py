"""
Unit tests for the chat service pipeline.
Tests cache hits, fresh generations (buffered and streamed), and failure paths.
"""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from rewards_ai.core.exceptions import InvalidChatRequest, UpstreamRateLimited
from rewards_ai.core.gateway import Completion
from rewards_ai.core.metrics import QualityScores
from rewards_ai.core.model_router import CHEAP_MODEL, HIGH_TIER_MODEL, MID_TIER_MODEL
from rewards_ai.core.retrieval import NO_CONTEXT_NOTICE, RetrievedContext
from rewards_ai.core.semantic_cache import CacheEntry
from rewards_ai.models.schemas import ChatRequest, ChatResponse
from rewards_ai.services.chat_service import ChatService, StreamingChat


def delta(content: str) -> bytes:
    payload = {"choices": [{"delta": {"content": content}}]}
    return f"data: {json.dumps(payload)}\n\n".encode("utf-8")


async def iterate(chunks):
    for chunk in chunks:
        yield chunk


def upstream_response(chunks):
    response = MagicMock()
    response.aiter_bytes = MagicMock(return_value=iterate(chunks))
    response.aclose = AsyncMock()
    return response


def make_request(content="Which card for dining?", **overrides) -> ChatRequest:
    return ChatRequest(
        messages=[{"role": "user", "content": content}],
        userId=overrides.pop("userId", "user-1"),
        **overrides,
    )


class TestChatService:
    """Tests for ChatService.handle."""

    @pytest.fixture
    def cache(self):
        cache = MagicMock()
        cache.lookup = AsyncMock(return_value=None)
        cache.store = AsyncMock()
        return cache

    @pytest.fixture
    def aggregator(self):
        aggregator = MagicMock()
        aggregator.retrieve = AsyncMock(
            return_value=RetrievedContext(
                user_cards="- HDFC Regalia (****1234): 12,000 points (est. value ₹4,800.00)"
            )
        )
        return aggregator

    @pytest.fixture
    def evaluation_logger(self):
        evaluation_logger = MagicMock()
        evaluation_logger.score = MagicMock(return_value=QualityScores(0.8, 0.6))
        evaluation_logger.log_usage = AsyncMock()
        evaluation_logger.log_evaluation = AsyncMock()
        return evaluation_logger

    @pytest.fixture
    def follow_ups(self):
        follow_ups = MagicMock()
        follow_ups.generate = AsyncMock(return_value=["How do I redeem?"])
        return follow_ups

    @pytest.fixture
    def service(self, cache, aggregator, mock_gateway, evaluation_logger, follow_ups):
        mock_gateway.complete = AsyncMock(
            return_value=Completion(
                content="Use your HDFC Regalia for dining.",
                model=CHEAP_MODEL,
                tokens_input=900,
                tokens_output=60,
            )
        )
        return ChatService(
            cache=cache,
            aggregator=aggregator,
            gateway=mock_gateway,
            evaluation_logger=evaluation_logger,
            follow_ups=follow_ups,
            cache_enabled=True,
        )

    # ============ Validation Tests ============

    @pytest.mark.asyncio
    async def test_empty_query_rejected(self, service, cache):
        with pytest.raises(InvalidChatRequest):
            await service.handle(make_request("   "))

        cache.lookup.assert_not_called()

    # ============ Cache Hit Tests ============

    @pytest.mark.asyncio
    async def test_cache_hit_returns_cached_response(
        self, service, cache, aggregator, mock_gateway, evaluation_logger
    ):
        cache.lookup.return_value = CacheEntry(
            id="cache-1",
            query_text="best dining card",
            response="Cached answer",
            model_used=MID_TIER_MODEL,
            tokens_input=100,
            tokens_output=20,
            hit_count=3,
            similarity=0.9512345,
        )

        result = await service.handle(make_request())

        assert isinstance(result, ChatResponse)
        assert result.cached is True
        assert result.semanticMatch is True
        assert result.similarity == 0.9512
        assert result.content == "Cached answer"
        assert result.followUpQuestions == ["How do I redeem?"]
        aggregator.retrieve.assert_not_called()
        mock_gateway.complete.assert_not_called()
        mock_gateway.open_stream.assert_not_called()
        cache.store.assert_not_called()
        evaluation_logger.log_evaluation.assert_not_called()

        usage = evaluation_logger.log_usage.await_args.args[0]
        assert usage.cache_hit is True
        assert usage.estimated_cost == 0.0
        assert usage.model == MID_TIER_MODEL

    @pytest.mark.asyncio
    async def test_cache_disabled_skips_lookup(self, service, cache):
        service.cache_enabled = False

        await service.handle(make_request(stream=False))

        cache.lookup.assert_not_called()
        cache.store.assert_not_called()

    # ============ Buffered Generation Tests ============

    @pytest.mark.asyncio
    async def test_fresh_generation_non_streaming(
        self, service, cache, mock_gateway, evaluation_logger
    ):
        result = await service.handle(make_request(stream=False))

        assert isinstance(result, ChatResponse)
        assert result.cached is False
        assert result.model == CHEAP_MODEL
        assert result.content == "Use your HDFC Regalia for dining."

        model, messages = mock_gateway.complete.await_args.args
        assert model == CHEAP_MODEL
        assert messages[0]["role"] == "system"
        assert "## Your Cards" in messages[0]["content"]
        assert messages[1] == {"role": "user", "content": "Which card for dining?"}

        cache.store.assert_awaited_once()
        assert cache.store.await_args.args[:3] == (
            "Which card for dining?",
            "Use your HDFC Regalia for dining.",
            CHEAP_MODEL,
        )

        usage = evaluation_logger.log_usage.await_args.args[0]
        assert usage.cache_hit is False
        assert usage.tokens_input == 900
        assert usage.estimated_cost == pytest.approx((900 * 0.075 + 60 * 0.30) / 1_000_000)

        evaluation = evaluation_logger.log_evaluation.await_args.args[0]
        assert evaluation.faithfulness_score == 0.8
        assert evaluation.model_used == CHEAP_MODEL
        assert evaluation.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_without_context_uses_notice(self, service, aggregator, mock_gateway):
        await service.handle(make_request(stream=False, includeContext=False))

        aggregator.retrieve.assert_not_called()
        system_prompt = mock_gateway.complete.await_args.args[1][0]["content"]
        assert NO_CONTEXT_NOTICE in system_prompt

    @pytest.mark.asyncio
    async def test_large_analysis_context_routes_high_tier(self, service, aggregator, mock_gateway):
        aggregator.retrieve.return_value = RetrievedContext(document_chunks=["x" * 12_000])

        await service.handle(make_request(stream=False, taskType="analysis"))

        assert mock_gateway.complete.await_args.args[0] == HIGH_TIER_MODEL

    @pytest.mark.asyncio
    async def test_upstream_error_propagates_without_store(
        self, service, cache, mock_gateway, evaluation_logger
    ):
        mock_gateway.complete.side_effect = UpstreamRateLimited()

        with pytest.raises(UpstreamRateLimited):
            await service.handle(make_request(stream=False))

        cache.store.assert_not_called()
        evaluation_logger.log_usage.assert_not_called()

    # ============ Streaming Tests ============

    @pytest.mark.asyncio
    async def test_streaming_generation(
        self, service, cache, mock_gateway, evaluation_logger, follow_ups
    ):
        chunks = [delta("Use "), delta("HDFC."), b"data: [DONE]\n\n"]
        upstream = upstream_response(chunks)
        mock_gateway.open_stream = AsyncMock(return_value=upstream)

        result = await service.handle(make_request())

        assert isinstance(result, StreamingChat)
        assert result.model == CHEAP_MODEL
        cache.store.assert_not_called()

        received = [chunk async for chunk in result.body]

        assert received[:3] == chunks
        assert json.loads(received[3].decode()[len("data: "):]) == {
            "followUpQuestions": ["How do I redeem?"]
        }
        upstream.aclose.assert_awaited_once()
        cache.store.assert_awaited_once()
        assert cache.store.await_args.args[1] == "Use HDFC."
        evaluation_logger.log_evaluation.assert_awaited_once()
        assert follow_ups.generate.await_args.args[1] == "Use HDFC."

    @pytest.mark.asyncio
    async def test_streaming_error_raised_before_body(self, service, mock_gateway):
        mock_gateway.open_stream = AsyncMock(side_effect=UpstreamRateLimited())

        with pytest.raises(UpstreamRateLimited):
            await service.handle(make_request())

    @pytest.mark.asyncio
    async def test_empty_stream_not_cached(self, service, cache, mock_gateway, evaluation_logger):
        mock_gateway.open_stream = AsyncMock(return_value=upstream_response([b"data: [DONE]\n\n"]))

        result = await service.handle(make_request())
        [chunk async for chunk in result.body]

        cache.store.assert_not_called()
        evaluation_logger.log_usage.assert_awaited_once()
