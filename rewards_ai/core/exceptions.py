"""Custom exceptions for the AI chat pipeline.

These exceptions provide structured error handling that:
- Separates internal details from user-facing messages
- Maps upstream failures onto the HTTP status the caller should see
- Distinguishes degradations that are absorbed from failures that are surfaced
"""


class RAGError(Exception):
    """Base exception for chat pipeline errors."""

    status_code: int = 500

    def __init__(self, message: str, user_message: str | None = None):
        """
        Initialize RAG error.

        Args:
            message: Internal error message for logging/debugging
            user_message: Safe message to show to users (defaults to generic message)
        """
        super().__init__(message)
        self.user_message = user_message or "An error occurred while processing your request."


class InvalidChatRequest(RAGError):
    """Request body is well-formed JSON but unusable."""

    status_code = 400

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message, user_message or message)


# ============ Absorbed degradations ============


class DependencyDegraded(RAGError):
    """Embedding provider returned no usable vector."""

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(
            message,
            user_message or "Unable to process text embeddings.",
        )


class DependencyUnavailable(RAGError):
    """Cache store or a context source could not be reached."""

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(
            message,
            user_message or "A data source is temporarily unavailable.",
        )


class MalformedStreamFrame(RAGError):
    """A server-sent event frame could not be parsed."""

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message, user_message or "Malformed stream frame.")


class PersistenceFailure(RAGError):
    """A cache or log write failed."""

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message, user_message or "Unable to save results.")


# ============ Surfaced upstream failures ============


class UpstreamError(RAGError):
    """The model gateway failed to produce an answer."""

    status_code = 500

    def __init__(
        self,
        message: str,
        user_message: str | None = None,
        upstream_status: int | None = None,
    ):
        super().__init__(message, user_message or message)
        self.upstream_status = upstream_status


class UpstreamRateLimited(UpstreamError):
    """Gateway answered 429."""

    status_code = 429

    def __init__(self, message: str = "AI gateway rate limited the request"):
        super().__init__(message, "Rate limit exceeded", upstream_status=429)


class UpstreamQuotaExhausted(UpstreamError):
    """Gateway answered 402."""

    status_code = 402

    def __init__(self, message: str = "AI gateway reported exhausted credits"):
        super().__init__(message, "AI credits exhausted", upstream_status=402)
