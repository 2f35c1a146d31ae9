"""Async client for the assistant's SSE stream.

Consumers get events through callbacks:

- ``on_message`` once per event, in arrival order
- ``on_complete`` at most once, after the stream ends or ``[DONE]`` arrives
- ``on_error`` at most once, after connection retries are exhausted

``disconnect()`` is terminal and silent: neither terminal callback fires
for a caller-initiated abort. Callbacks may be plain functions or
coroutine functions.
"""

import asyncio
import codecs
import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from enum import StrEnum
from typing import Any

import httpx
import pydantic

from commerce_assistant.core.config import settings
from commerce_assistant.core.exceptions import StreamConnectionError
from commerce_assistant.schemas.chat import ChatRequest, StreamEvent
from commerce_assistant.services.error_handling import classify, default_should_retry
from commerce_assistant.services.streaming import DATA_PREFIX, DONE_SENTINEL

logger = logging.getLogger(__name__)


class StreamState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ABORTED = "aborted"
    FAILED = "failed"


class SSEDecoder:
    """Incremental decoder from byte chunks to stream events.

    The last, possibly incomplete line is held back until the next chunk
    (or ``flush``) completes it, so an event split across chunks is
    delivered once, whole.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._parse_lines(lines)

    def flush(self) -> list[StreamEvent]:
        """Parse whatever remains once the byte stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        remaining, self._buffer = self._buffer, ""
        return self._parse_lines([remaining])

    def reset(self) -> None:
        self._decoder.reset()
        self._buffer = ""
        self.done = False

    def _parse_lines(self, lines: list[str]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for line in lines:
            if self.done:
                break
            event = self._parse_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events

    def _parse_line(self, line: str) -> StreamEvent | None:
        if not line.startswith(DATA_PREFIX):
            return None
        data = line[len(DATA_PREFIX) :].strip()
        if data == DONE_SENTINEL:
            self.done = True
            return None
        try:
            return StreamEvent.model_validate(json.loads(data))
        except (json.JSONDecodeError, pydantic.ValidationError) as e:
            logger.warning("Skipping unparsable stream line %r: %s", line, e)
            return None


MessageCallback = Callable[[StreamEvent], Awaitable[None] | None]
ErrorCallback = Callable[[StreamConnectionError], Awaitable[None] | None]
CompleteCallback = Callable[[], Awaitable[None] | None]


async def _emit(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class StreamingClient:
    """One stream at a time over ``POST url`` with retries and abort.

    Args:
        url: Chat endpoint.
        on_message: Called for each decoded event.
        on_error: Called with a ``StreamConnectionError`` once the
            connection fails for good.
        on_complete: Called when the stream ends normally.
        retry_attempts: Reconnections after the first attempt.
        retry_delay: Seconds; the wait before reconnection ``n`` is
            ``retry_delay * n``.
    """

    def __init__(
        self,
        url: str,
        *,
        on_message: MessageCallback,
        on_error: ErrorCallback,
        on_complete: CompleteCallback | None = None,
        headers: Mapping[str, str] | None = None,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
        connect_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self.on_message = on_message
        self.on_error = on_error
        self.on_complete = on_complete
        self.headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            **(headers or {}),
        }
        self.retry_attempts = (
            retry_attempts if retry_attempts is not None else settings.stream_retry_attempts
        )
        self.retry_delay = retry_delay if retry_delay is not None else settings.stream_retry_delay
        self.connect_timeout = connect_timeout
        self._transport = transport
        self._sleep = sleep

        self.state = StreamState.IDLE
        self.attempts = 0
        self._task: asyncio.Task[None] | None = None
        self._aborted = False

    @property
    def is_active(self) -> bool:
        return self.state in (StreamState.CONNECTING, StreamState.STREAMING)

    async def connect(self, request: ChatRequest | Mapping[str, Any]) -> None:
        """Stream one response, returning once it reaches a terminal state.

        Raises:
            RuntimeError: If a stream is already active on this client.
        """
        if self.is_active:
            raise RuntimeError("A stream is already active on this client")

        payload = (
            request.model_dump(mode="json") if isinstance(request, ChatRequest) else dict(request)
        )
        body = {**payload, "stream": True}

        self._aborted = False
        self.attempts = 0
        self.state = StreamState.CONNECTING
        self._task = asyncio.create_task(self._run(body))
        try:
            await self._task
        except asyncio.CancelledError:
            if self._aborted:
                return
            self.state = StreamState.ABORTED
            raise
        finally:
            self._task = None

    def disconnect(self) -> None:
        """Abort the active stream. No callback fires for the abort."""
        if not self.is_active:
            return
        self._aborted = True
        self.state = StreamState.ABORTED
        if self._task is not None:
            self._task.cancel()
        logger.info("Stream disconnected by caller")

    def _transition(self, state: StreamState) -> bool:
        """Move to ``state`` unless the caller has aborted. Returns False if aborted."""
        if self._aborted:
            return False
        self.state = state
        return True

    async def _run(self, body: dict[str, Any]) -> None:
        while self._transition(StreamState.CONNECTING):
            self.attempts += 1
            try:
                await self._stream_once(body)
            except httpx.HTTPError as error:
                classified = classify(error)
                retries_used = self.attempts - 1
                if retries_used < self.retry_attempts and default_should_retry(error):
                    delay = self.retry_delay * self.attempts
                    logger.warning(
                        "Stream attempt %d failed (%s), retrying in %.1fs",
                        self.attempts,
                        classified.technical_message,
                        delay,
                    )
                    await self._sleep(delay)
                    continue
                logger.error(
                    "Stream failed after %d attempt(s): %s",
                    self.attempts,
                    classified.technical_message,
                )
                if self._transition(StreamState.FAILED):
                    await _emit(self.on_error, StreamConnectionError(classified, self.attempts))
                return
            except Exception:
                self._transition(StreamState.FAILED)
                raise

            if self._transition(StreamState.COMPLETE):
                await _emit(self.on_complete)
            return

    async def _dispatch(self, events: list[StreamEvent]) -> None:
        for event in events:
            if self._aborted:
                return
            await _emit(self.on_message, event)

    async def _stream_once(self, body: dict[str, Any]) -> None:
        decoder = SSEDecoder()
        timeout = httpx.Timeout(self.connect_timeout, read=None)
        async with httpx.AsyncClient(
            headers=self.headers, timeout=timeout, transport=self._transport
        ) as client:
            async with client.stream("POST", self.url, json=body) as response:
                if response.is_error:
                    await response.aread()
                    response.raise_for_status()

                if not self._transition(StreamState.STREAMING):
                    return
                async for chunk in response.aiter_bytes():
                    await self._dispatch(decoder.feed(chunk))
                    if decoder.done or self._aborted:
                        return

        await self._dispatch(decoder.flush())
