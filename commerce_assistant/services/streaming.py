"""Server side of the stream wire protocol.

Each event is one line ``data: <json>\\n``; the stream ends with
``data: [DONE]\\n`` or connection close.
"""

import json
from collections.abc import AsyncIterator
from typing import Any

from commerce_assistant.schemas.chat import StreamEvent

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
DONE_LINE = f"{DATA_PREFIX}{DONE_SENTINEL}\n"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


def encode_event(event: StreamEvent) -> str:
    """Encode one event as a single SSE data line."""
    payload = event.model_dump(mode="json")
    return f"{DATA_PREFIX}{json.dumps(payload, separators=(',', ':'), default=str)}\n"


def make_event(type_: str, data: Any = None) -> StreamEvent:
    return StreamEvent.model_validate({"type": type_, "data": data})


async def encode_stream(events: AsyncIterator[StreamEvent]) -> AsyncIterator[bytes]:
    """Encode an event iterator for a StreamingResponse, ending with DONE."""
    async for event in events:
        yield encode_event(event).encode("utf-8")
    yield DONE_LINE.encode("utf-8")
