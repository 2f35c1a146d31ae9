"""Chat API endpoints for the storefront assistant."""

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import StreamingResponse

from commerce_assistant.core.auth import OptionalCaller
from commerce_assistant.core.config import settings
from commerce_assistant.core.deps import ChatServiceDep
from commerce_assistant.core.rate_limit import limiter
from commerce_assistant.schemas.chat import ChatRequest, ChatResponse
from commerce_assistant.services.streaming import STREAM_HEADERS, encode_stream

router = APIRouter()


@router.post(
    "/messages",
    response_model=ChatResponse,
    status_code=status.HTTP_200_OK,
    summary="Run an assistant turn",
    description="""
    Execute the actions chosen for this turn and report the results.

    With `stream: true` (the default) the response is `text/event-stream`:
    one `data: <json>` line per event, ending with `data: [DONE]`.
    Otherwise the events are aggregated into a single JSON response.
    """,
    responses={200: {"content": {"text/event-stream": {}}}},
)
@limiter.limit(settings.chat_rate_limit)
async def send_message(
    request: Request,  # noqa: ARG001 (slowapi reads it)
    body: ChatRequest,
    chat_service: ChatServiceDep,
    caller: OptionalCaller,
) -> Response | ChatResponse:
    """Send a message and get the assistant's response."""
    if body.stream:
        return StreamingResponse(
            encode_stream(chat_service.stream_turn(body, caller=caller)),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )
    return await chat_service.respond(body, caller=caller)
