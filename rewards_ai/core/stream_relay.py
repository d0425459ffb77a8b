"""
Tee for a server-sent event stream from the model gateway.

Bytes are forwarded to the client untouched while a parser recovers the
generated text and token usage. When the upstream ends (or the client
goes away) the completion hook runs exactly once.
"""

import asyncio
import codecs
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from rewards_ai.core.exceptions import MalformedStreamFrame

logger = logging.getLogger(__name__)


def sse_frame(payload: Dict[str, Any]) -> bytes:
    """Encode one ``data:`` event."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def parse_frame(payload: str) -> Dict[str, Any]:
    """
    Parse the JSON body of a ``data:`` line.

    Raises:
        MalformedStreamFrame: payload is not a JSON object
    """
    try:
        frame = json.loads(payload)
    except ValueError as e:
        raise MalformedStreamFrame(f"Unparseable SSE frame: {payload[:80]!r}") from e
    if not isinstance(frame, dict):
        raise MalformedStreamFrame(f"SSE frame is not an object: {payload[:80]!r}")
    return frame


def read_chunk(frame: Dict[str, Any]) -> Tuple[Optional[str], Optional[Tuple[int, int]]]:
    """
    Extract the delta text and token usage from a chat completion chunk.

    Missing fields are fine; fields of the wrong type are not.

    Raises:
        MalformedStreamFrame: ``choices``, ``delta`` or ``usage`` has an unexpected shape
    """
    content = None
    choices = frame.get("choices")
    if choices is not None and not isinstance(choices, list):
        raise MalformedStreamFrame(f"'choices' is not a list: {type(choices).__name__}")
    if choices:
        choice = choices[0]
        if not isinstance(choice, dict):
            raise MalformedStreamFrame(f"Choice is not an object: {type(choice).__name__}")
        delta = choice.get("delta")
        if delta is not None and not isinstance(delta, dict):
            raise MalformedStreamFrame(f"'delta' is not an object: {type(delta).__name__}")
        content = (delta or {}).get("content")
        if content is not None and not isinstance(content, str):
            raise MalformedStreamFrame(f"'content' is not a string: {type(content).__name__}")

    usage = frame.get("usage")
    if usage is None:
        return content, None
    if not isinstance(usage, dict):
        raise MalformedStreamFrame(f"'usage' is not an object: {type(usage).__name__}")
    tokens = (usage.get("prompt_tokens") or 0, usage.get("completion_tokens") or 0)
    if not all(isinstance(t, int) and not isinstance(t, bool) for t in tokens):
        raise MalformedStreamFrame(f"Token counts are not integers: {tokens!r}")
    return content, tokens


class SSEAccumulator:
    """
    Incremental parser for OpenAI-style streaming chunks.

    Handles UTF-8 sequences and lines split across network chunks.
    Malformed frames are counted and skipped.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._parts: List[str] = []
        self.tokens_input = 0
        self.tokens_output = 0
        self.frames = 0
        self.malformed_frames = 0
        self.bytes_seen = 0

    @property
    def full_text(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: bytes) -> None:
        self.bytes_seen += len(chunk)
        self._pending += self._decoder.decode(chunk)
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            self._handle_line(line)

    def finish(self) -> None:
        """Flush whatever is left after the last chunk."""
        self._pending += self._decoder.decode(b"", final=True)
        if self._pending:
            self._handle_line(self._pending)
            self._pending = ""

    def _handle_line(self, line: str) -> None:
        line = line.rstrip("\r")
        if not line.startswith("data:"):
            return
        payload = line[len("data:"):].strip()
        if not payload or payload == "[DONE]":
            return

        try:
            content, usage = read_chunk(parse_frame(payload))
        except MalformedStreamFrame as e:
            self.malformed_frames += 1
            logger.debug(str(e))
            return

        self.frames += 1
        if content:
            self._parts.append(content)
        if usage is not None:
            self.tokens_input, self.tokens_output = usage


CompletionHook = Callable[[SSEAccumulator], Awaitable[None]]
TrailerHook = Callable[[SSEAccumulator], Awaitable[Optional[bytes]]]
CloseHook = Callable[[], Awaitable[None]]


class StreamRelay:
    """
    Forward an upstream byte stream while tapping it for bookkeeping.

    Usage:
        relay = StreamRelay(response.aiter_bytes(), on_complete=persist,
                            trailer=follow_ups, on_close=response.aclose)
        return StreamingResponse(relay.relay(), media_type="text/event-stream")

    ``on_complete`` runs once, after the last upstream byte has been
    forwarded, and also when the client disconnects or the upstream
    fails (with the partial text). It runs in its own task so client
    cancellation cannot interrupt it.
    """

    def __init__(
        self,
        source: AsyncIterator[bytes],
        on_complete: CompletionHook,
        trailer: Optional[TrailerHook] = None,
        on_close: Optional[CloseHook] = None,
    ):
        self.source = source
        self.on_complete = on_complete
        self.trailer = trailer
        self.on_close = on_close
        self.accumulator = SSEAccumulator()
        self._completion: Optional[asyncio.Future] = None

    def on_chunk(self, chunk: bytes) -> None:
        """Feed the parser. Parser errors never stop forwarding."""
        try:
            self.accumulator.feed(chunk)
        except Exception:
            logger.exception("Stream parser failed on chunk, forwarding it unparsed")

    @property
    def completed(self) -> bool:
        return self._completion is not None and self._completion.done()

    async def finalize(self) -> None:
        """
        Run the completion once if the relay has not already done so.

        Covers a response body that was never iterated, e.g. the client
        went away before the first chunk was requested.
        """
        completion = self._start_completion()
        if not completion.done():
            logger.info("Stream relay finalized outside the body iterator")
        await asyncio.shield(completion)

    async def relay(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.source:
                self.on_chunk(chunk)
                yield chunk

            completion = self._start_completion()
            frame = await self.trailer(self.accumulator) if self.trailer else None
            await asyncio.shield(completion)
            if frame:
                yield frame
        finally:
            completion = self._start_completion()
            if not completion.done():
                logger.info("Stream ended early, finishing bookkeeping with partial response")
            await asyncio.shield(completion)

    def _start_completion(self) -> asyncio.Future:
        if self._completion is None:
            self.accumulator.finish()
            self._completion = asyncio.ensure_future(self._finalize())
        return self._completion

    async def _finalize(self) -> None:
        if self.on_close is not None:
            try:
                await self.on_close()
            except Exception as e:
                logger.warning(f"Failed to close upstream stream: {e}")
        try:
            await self.on_complete(self.accumulator)
        except Exception:
            logger.exception("Stream completion hook failed")
