"""
Client for the OpenAI-compatible chat completions gateway.

Supports buffered and streamed calls. Gateway failures are classified
into the exceptions the API layer turns into HTTP statuses.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from rewards_ai.config import get_settings
from rewards_ai.core.exceptions import (
    UpstreamError,
    UpstreamQuotaExhausted,
    UpstreamRateLimited,
)

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    """A buffered (non-streaming) gateway answer."""

    content: str
    model: str
    tokens_input: int = 0
    tokens_output: int = 0


def classify_status(status_code: int, body: str = "") -> UpstreamError:
    """Map a non-2xx gateway status to the exception surfaced to callers."""
    if status_code == 429:
        return UpstreamRateLimited()
    if status_code == 402:
        return UpstreamQuotaExhausted()
    detail = f"AI API error: {status_code}"
    if body:
        logger.error(f"{detail} - {body[:200]}")
    return UpstreamError(detail, upstream_status=status_code)


class ModelGateway:
    """
    Chat completions over HTTP.

    One httpx.AsyncClient is shared for the lifetime of the gateway;
    close it with ``aclose()`` on shutdown.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.url = url or settings.ai_gateway_url
        self.api_key = api_key if api_key is not None else settings.ai_gateway_api_key
        self.timeout = timeout or settings.ai_gateway_timeout_seconds
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy-load the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def complete(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Completion:
        """
        Buffered chat completion.

        Raises:
            UpstreamRateLimited, UpstreamQuotaExhausted, UpstreamError
        """
        payload: Dict[str, Any] = {"model": model, "messages": messages, "stream": False}
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        try:
            response = await self.client.post(
                self.url,
                headers=self._headers(),
                json=payload,
                timeout=timeout or self.timeout,
            )
        except httpx.TimeoutException as e:
            raise UpstreamError(f"AI gateway timed out: {e}", "AI gateway timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"AI gateway unreachable: {e}", "AI gateway unreachable") from e

        if not response.is_success:
            raise classify_status(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(f"AI gateway returned invalid JSON: {e}") from e

        choices = data.get("choices") or [{}]
        usage = data.get("usage") or {}
        return Completion(
            content=(choices[0].get("message") or {}).get("content") or "",
            model=data.get("model") or model,
            tokens_input=usage.get("prompt_tokens") or 0,
            tokens_output=usage.get("completion_tokens") or 0,
        )

    async def open_stream(
        self,
        model: str,
        messages: List[Dict[str, Any]],
    ) -> httpx.Response:
        """
        Start a streamed chat completion.

        The status is checked before returning, so errors surface before
        any byte reaches the client. The caller owns the returned response
        and must ``aclose()`` it.

        Raises:
            UpstreamRateLimited, UpstreamQuotaExhausted, UpstreamError
        """
        request = self.client.build_request(
            "POST",
            self.url,
            headers=self._headers(),
            json={"model": model, "messages": messages, "stream": True},
        )

        try:
            response = await self.client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"AI gateway timed out: {e}", "AI gateway timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"AI gateway unreachable: {e}", "AI gateway unreachable") from e

        if not response.is_success:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            raise classify_status(response.status_code, body)

        return response

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
