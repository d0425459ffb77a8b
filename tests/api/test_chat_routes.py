"""
API tests for chat endpoints.
Tests JSON and SSE responses, error status mapping, and request validation.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, patch

from fastapi import status
from httpx import AsyncClient

from rewards_ai.api.routes.chat import RelayStreamingResponse
from rewards_ai.core.exceptions import (
    InvalidChatRequest,
    UpstreamError,
    UpstreamQuotaExhausted,
    UpstreamRateLimited,
)
from rewards_ai.core.stream_relay import StreamRelay
from rewards_ai.models.schemas import MAX_QUERY_LENGTH, ChatResponse
from rewards_ai.services.chat_service import StreamingChat


CHAT_BODY = {
    "messages": [{"role": "user", "content": "Which card for dining?"}],
    "userId": "user-1",
    "taskType": "chat",
}


async def frames(chunks):
    for chunk in chunks:
        yield chunk


class TestChatEndpoint:
    """Tests for POST /api/chat/."""

    @pytest.mark.asyncio
    async def test_cached_response_is_json(self, test_client: AsyncClient, mock_chat_service):
        mock_chat_service.handle.return_value = ChatResponse(
            content="Use HDFC Regalia.",
            model="google/gemini-3-flash-preview",
            cached=True,
            semanticMatch=False,
            similarity=1.0,
            followUpQuestions=["How do I redeem?"],
        )

        response = await test_client.post("/api/chat/", json=CHAT_BODY)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["cached"] is True
        assert data["semanticMatch"] is False
        assert data["followUpQuestions"] == ["How do I redeem?"]

    @pytest.mark.asyncio
    async def test_fresh_response_omits_cache_fields(self, test_client, mock_chat_service):
        mock_chat_service.handle.return_value = ChatResponse(
            content="Answer", model="google/gemini-2.5-flash", cached=False
        )

        response = await test_client.post("/api/chat/", json={**CHAT_BODY, "stream": False})

        data = response.json()
        assert data["cached"] is False
        assert "semanticMatch" not in data
        assert "similarity" not in data

    @pytest.mark.asyncio
    async def test_streaming_response(self, test_client, mock_chat_service):
        chunks = [
            b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n',
            b"data: [DONE]\n\n",
            b'data: {"followUpQuestions": ["Next?"]}\n\n',
        ]
        mock_chat_service.handle.return_value = StreamingChat(
            body=frames(chunks), model="google/gemini-2.5-flash"
        )

        response = await test_client.post("/api/chat/", json=CHAT_BODY)

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["x-model"] == "google/gemini-2.5-flash"
        assert response.content == b"".join(chunks)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,expected_status,expected_message",
        [
            (UpstreamRateLimited(), 429, "Rate limit exceeded"),
            (UpstreamQuotaExhausted(), 402, "AI credits exhausted"),
            (UpstreamError("AI API error: 503", upstream_status=503), 500, "AI API error: 503"),
            (InvalidChatRequest("The last message must have content."), 400,
             "The last message must have content."),
        ],
    )
    async def test_error_mapping(
        self, test_client, mock_chat_service, error, expected_status, expected_message
    ):
        mock_chat_service.handle.side_effect = error

        response = await test_client.post("/api/chat/", json=CHAT_BODY)

        assert response.status_code == expected_status
        assert response.json() == {"error": expected_message}

    @pytest.mark.asyncio
    async def test_unexpected_error_is_500(self, test_client, mock_chat_service):
        mock_chat_service.handle.side_effect = KeyError("boom")

        response = await test_client.post("/api/chat/", json=CHAT_BODY)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"error": "An unexpected error occurred. Please try again."}

    # ============ Validation Tests ============

    @pytest.mark.asyncio
    async def test_empty_messages_is_400(self, test_client, mock_chat_service):
        response = await test_client.post("/api/chat/", json={"messages": []})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "error" in response.json()
        mock_chat_service.handle.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_body_is_400(self, test_client):
        response = await test_client.post(
            "/api/chat/",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.asyncio
    async def test_invalid_role_is_400(self, test_client):
        response = await test_client.post(
            "/api/chat/",
            json={"messages": [{"role": "tool", "content": "x"}]},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.asyncio
    async def test_long_history_turn_is_accepted(self, test_client, mock_chat_service):
        mock_chat_service.handle.return_value = ChatResponse(
            content="Answer", model="google/gemini-2.5-flash", cached=False
        )
        body = {
            "messages": [
                {"role": "user", "content": "Analyse my spending"},
                {"role": "assistant", "content": "x" * (MAX_QUERY_LENGTH + 5000)},
                {"role": "user", "content": "Which category grew most?"},
            ],
            "stream": False,
        }

        response = await test_client.post("/api/chat/", json=body)

        assert response.status_code == status.HTTP_200_OK
        mock_chat_service.handle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_overlong_last_message_is_400(self, test_client, mock_chat_service):
        body = {"messages": [{"role": "user", "content": "x" * (MAX_QUERY_LENGTH + 1)}]}

        response = await test_client.post("/api/chat/", json=body)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "error" in response.json()
        mock_chat_service.handle.assert_not_called()


class TestRelayStreamingResponse:
    """Tests for finalizing streamed answers."""

    @pytest.mark.asyncio
    async def test_finalize_runs_after_stream(self, test_client, mock_chat_service):
        finalize = AsyncMock()
        mock_chat_service.handle.return_value = StreamingChat(
            body=frames([b"data: [DONE]\n\n"]), model="google/gemini-2.5-flash", finalize=finalize
        )

        response = await test_client.post("/api/chat/", json=CHAT_BODY)

        assert response.status_code == status.HTTP_200_OK
        finalize.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_client_gone_before_first_chunk_still_completes(self):
        """A body that is never iterated still closes upstream and records once."""
        on_complete = AsyncMock()
        on_close = AsyncMock()
        relay = StreamRelay(frames([b"data: [DONE]\n\n"]), on_complete=on_complete, on_close=on_close)
        response = RelayStreamingResponse(
            StreamingChat(body=relay.relay(), model="m", finalize=relay.finalize),
            media_type="text/event-stream",
        )

        async def receive():
            await asyncio.Event().wait()

        async def send(message):
            raise OSError("connection reset")

        scope = {"type": "http", "asgi": {"version": "3.0", "spec_version": "2.4"}}
        with pytest.raises(Exception):
            await response(scope, receive, send)

        on_close.assert_awaited_once()
        on_complete.assert_awaited_once()
        assert relay.completed


class TestHealthEndpoints:
    """Tests for /api/health."""

    @pytest.mark.asyncio
    async def test_health(self, test_client):
        response = await test_client.get("/api/health/")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    @patch("rewards_ai.api.routes.health.check_database")
    async def test_ready(self, mock_check_database, test_client):
        mock_check_database.return_value = True

        response = await test_client.get("/api/health/ready")

        data = response.json()
        assert data["status"] == "ready"
        assert data["checks"]["database"] == "ready"

    @pytest.mark.asyncio
    @patch("rewards_ai.api.routes.health.check_database")
    async def test_not_ready_without_database(self, mock_check_database, test_client):
        mock_check_database.return_value = False

        response = await test_client.get("/api/health/ready")

        data = response.json()
        assert data["status"] == "not_ready"
        assert data["checks"]["database"] == "unavailable"

    @pytest.mark.asyncio
    async def test_cache_stats(self, test_client):
        response = await test_client.get("/api/health/cache")

        assert response.json() == {"active_entries": 3, "total_hits": 12}
