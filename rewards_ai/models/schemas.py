"""
Pydantic schemas for API request/response validation.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

MAX_QUERY_LENGTH = 20000


# ============ Chat Schemas ============

class ChatMessage(BaseModel):
    """One turn of the conversation."""

    role: Literal["user", "assistant", "system"] = Field(..., description="Message author")
    content: str = Field(..., description="Message text")


class ChatRequest(BaseModel):
    """Chat/analysis request."""

    messages: List[ChatMessage] = Field(..., min_length=1, description="Conversation so far")
    userId: Optional[str] = Field(None, description="Owner of the personal context")
    taskType: str = Field(
        "chat",
        description="chat | analysis | recommendation | parsing | extraction",
    )
    includeContext: bool = Field(True, description="Retrieve grounding context")
    stream: bool = Field(True, description="Stream the answer as server-sent events")
    selectedCardId: Optional[str] = Field(None, description="Restrict card context to one card")

    @model_validator(mode="after")
    def check_query_length(self) -> "ChatRequest":
        """Cap the length of the last message only."""
        if self.messages and len(self.messages[-1].content) > MAX_QUERY_LENGTH:
            raise ValueError(f"Last message exceeds {MAX_QUERY_LENGTH} characters")
        return self

    @property
    def query(self) -> str:
        """Content of the last message."""
        return self.messages[-1].content if self.messages else ""


class ChatResponse(BaseModel):
    """Non-streaming chat response."""

    content: str = Field(..., description="Generated or cached answer")
    model: str = Field(..., description="Model that produced the answer")
    cached: bool = Field(False, description="Served from the response cache")
    semanticMatch: Optional[bool] = Field(None, description="Cache hit via vector similarity")
    similarity: Optional[float] = Field(None, description="Similarity of the cached query")
    followUpQuestions: List[str] = Field(default_factory=list, description="Suggested next questions")


class ErrorResponse(BaseModel):
    """Error body for every failure status."""

    error: str


# ============ Health Schemas ============

class CacheStats(BaseModel):
    """Response cache statistics."""

    active_entries: int = Field(..., ge=0)
    total_hits: int = Field(..., ge=0)
