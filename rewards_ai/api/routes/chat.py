"""
Chat endpoint for the rewards assistant.
"""

import logging

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse, StreamingResponse

from rewards_ai.api.deps import ChatServiceDep
from rewards_ai.core.exceptions import RAGError
from rewards_ai.models.schemas import ChatRequest, ChatResponse, ErrorResponse
from rewards_ai.services.chat_service import StreamingChat

logger = logging.getLogger(__name__)

router = APIRouter()


class RelayStreamingResponse(StreamingResponse):
    """Streaming response that finalizes the relay even if the body never starts."""

    def __init__(self, chat: StreamingChat, **kwargs):
        super().__init__(chat.body, **kwargs)
        self.finalize = chat.finalize

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            if self.finalize is not None:
                await self.finalize()


@router.post(
    "/",
    response_model=ChatResponse,
    response_model_exclude_none=True,
    responses={
        200: {"content": {"text/event-stream": {}}},
        400: {"model": ErrorResponse},
        402: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def chat(request: ChatRequest, service: ChatServiceDep):
    """
    Answer a rewards question.

    The response is one of:
    - JSON ChatResponse for cache hits and non-streaming requests
    - text/event-stream relaying the model's chunks, followed by a final
      ``{"followUpQuestions": [...]}`` frame

    Upstream rate limiting and exhausted credits surface as 429 and 402.
    """
    try:
        result = await service.handle(request)
    except RAGError as e:
        logger.warning(f"Chat request failed: {e}")
        return JSONResponse(status_code=e.status_code, content={"error": e.user_message})
    except Exception:
        logger.exception("Unexpected error handling chat request")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "An unexpected error occurred. Please try again."},
        )

    if isinstance(result, StreamingChat):
        return RelayStreamingResponse(
            result,
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
                "X-Model": result.model,
            },
        )

    return result
