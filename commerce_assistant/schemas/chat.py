"""Pydantic schemas for chat, streaming and action results."""

from typing import Any, Literal

from pydantic import Field

from commerce_assistant.schemas.actions import AssistantMode
from commerce_assistant.schemas.common import BaseSchema
from commerce_assistant.schemas.context import AssistantMessage

# === Action Schemas ===


class ToolSpec(BaseSchema):
    """An action as exposed to the orchestration layer."""

    name: str
    description: str
    category: str
    parameters: dict[str, Any]  # JSON schema


class ActionResult(BaseSchema):
    """Outcome of a successful action invocation."""

    action_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    format: Literal["text", "markdown", "json", "custom"] = "markdown"
    message: str | None = None
    ui: dict[str, Any] | None = None
    duration_ms: float = 0.0


class ActionCall(BaseSchema):
    """An action chosen by the orchestration layer for this turn."""

    id: str = Field(..., min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)


# === Stream Schemas ===

StreamEventType = Literal["metadata", "content", "actions", "ui", "error", "done"]


class StreamEvent(BaseSchema):
    """One typed unit of server-to-client push data."""

    type: StreamEventType
    data: Any = None


# === Chat API Schemas ===


class ChatContext(BaseSchema):
    """Client-supplied page context.

    Customer identity and permissions come only from the verified bearer
    token. Unknown keys such as ``customer_id`` are ignored.
    """

    cart_id: str | None = None
    locale: str | None = None
    currency: str | None = None
    current_page: str | None = None


class ChatRequest(BaseSchema):
    """Request for one assistant turn."""

    message: str = Field(..., min_length=1, max_length=4000)
    session_id: str | None = None
    mode: AssistantMode | None = None  # None = server default
    context: ChatContext = Field(default_factory=ChatContext)
    history: list[AssistantMessage] = Field(default_factory=list)
    actions: list[ActionCall] = Field(default_factory=list)
    stream: bool = True


class ChatMetadata(BaseSchema):
    session_id: str
    mode: AssistantMode
    processing_time_ms: float
    version: str


class ChatResponse(BaseSchema):
    """Aggregated response when streaming is disabled."""

    message: str
    actions: list[ActionResult] = Field(default_factory=list)
    ui: list[dict[str, Any]] = Field(default_factory=list)
    error: dict[str, Any] | None = None
    metadata: ChatMetadata


class InvokeRequest(BaseSchema):
    """Direct invocation of one action outside a chat turn."""

    params: dict[str, Any] = Field(default_factory=dict)
    mode: AssistantMode | None = None
    session_id: str | None = None
    context: ChatContext = Field(default_factory=ChatContext)
