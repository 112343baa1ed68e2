"""Streaming response handling for the NIM proxy."""

import json
import logging
from typing import AsyncGenerator, AsyncIterator, List, Optional, Tuple
import httpx
from pydantic import BaseModel, ConfigDict

from .utils import splice_reasoning

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_PAYLOAD = "[DONE]"


class StreamState(BaseModel):
    """Per-stream state: the unterminated tail of the last chunk and whether a <think> block is open."""
    model_config = ConfigDict(frozen=True)

    buffer: str = ""
    reasoning_open: bool = False


def transform_line(
    line: str, reasoning_open: bool, show_reasoning: bool
) -> Tuple[Optional[str], bool]:
    """
    Translate one complete SSE line.

    Returns the line to emit (None when the line is dropped) and the new
    reasoning_open flag. Lines that are not data lines are dropped; the
    [DONE] sentinel and unparseable payloads are passed through untouched.
    """
    if not line.startswith(DATA_PREFIX):
        return None, reasoning_open

    payload = line[len(DATA_PREFIX):]
    if payload.strip() == DONE_PAYLOAD:
        return line, reasoning_open

    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Forwarding unparseable stream line as-is: %s", line)
        return line, reasoning_open

    if isinstance(data, dict):
        choices = data.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            delta = choices[0].get("delta")
            if isinstance(delta, dict):
                reasoning_open = splice_reasoning(delta, reasoning_open, show_reasoning)

    encoded = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    return f"{DATA_PREFIX}{encoded}", reasoning_open


def step(
    state: StreamState, chunk: str, show_reasoning: bool
) -> Tuple[StreamState, List[str]]:
    """
    Consume one raw chunk of backend SSE text.

    Complete lines are translated in order; the trailing fragment after the
    last newline is carried over in the returned state.
    """
    lines = (state.buffer + chunk).split("\n")
    buffer = lines.pop()
    reasoning_open = state.reasoning_open

    emitted = []
    for line in lines:
        if line.endswith("\r"):
            line = line[:-1]
        out, reasoning_open = transform_line(line, reasoning_open, show_reasoning)
        if out is not None:
            emitted.append(out)

    return StreamState(buffer=buffer, reasoning_open=reasoning_open), emitted


def frame(line: str) -> bytes:
    """Wrap one line as a complete SSE event."""
    return f"{line}\n\n".encode()


class StreamTransducer:
    """
    Owns the StreamState of a single relayed stream.

    feed() may be called until close(); after that the transducer is CLOSED
    and rejects input.
    """

    def __init__(self, show_reasoning: bool = False):
        self.show_reasoning = show_reasoning
        self.state = StreamState()
        self.closed = False

    def feed(self, chunk: str) -> List[bytes]:
        if self.closed:
            raise RuntimeError("Stream transducer is already closed")
        self.state, lines = step(self.state, chunk, self.show_reasoning)
        return [frame(line) for line in lines]

    def close(self) -> None:
        if self.closed:
            return
        if self.state.buffer:
            logger.debug(
                "Discarding %d unterminated bytes at end of stream",
                len(self.state.buffer),
            )
        self.state = StreamState()
        self.closed = True


class StreamingResponseWrapper:
    """
    Wrapper for a streamed httpx Response and the client that owns it,
    iterable with `async for` over decoded text chunks.
    """

    def __init__(self, response: httpx.Response, client: Optional[httpx.AsyncClient] = None):
        self.response = response
        self.client = client
        self.closed = False

    def __aiter__(self) -> AsyncIterator[str]:
        return self.response.aiter_text()

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self.response.aclose()
        if self.client is not None:
            await self.client.aclose()


async def relay_stream(
    upstream: StreamingResponseWrapper, show_reasoning: bool = False
) -> AsyncGenerator[bytes, None]:
    """
    Re-emit a backend event stream in the OpenAI event schema.

    Ends once, either when the backend stream ends or when it fails; a
    transport failure is logged and closes the outgoing stream without
    flushing the partial line.
    """
    transducer = StreamTransducer(show_reasoning)
    try:
        async for chunk in upstream:
            for event in transducer.feed(chunk):
                yield event
    except (httpx.HTTPError, httpx.StreamError) as e:
        logger.error(f"Stream error: {str(e)}")
    finally:
        transducer.close()
        await upstream.aclose()
