"""Action catalog and direct invocation endpoints."""

from fastapi import APIRouter, Query

from commerce_assistant.core.auth import OptionalCaller
from commerce_assistant.core.config import settings
from commerce_assistant.core.deps import ChatServiceDep, Registries
from commerce_assistant.schemas.actions import AssistantMode
from commerce_assistant.schemas.chat import ActionResult, InvokeRequest, ToolSpec

router = APIRouter()


@router.get(
    "/tools",
    response_model=list[ToolSpec],
    summary="List available actions",
)
async def list_tools(
    registries: Registries,
    mode: AssistantMode | None = Query(None, description="Defaults to the server mode"),
) -> list[ToolSpec]:
    """Return the tools enabled for a mode, as exposed to the orchestration layer."""
    registry = registries.get(mode or AssistantMode(settings.default_mode))
    return registry.get_tools()


@router.post(
    "/{action_id}/invoke",
    response_model=ActionResult,
    summary="Invoke an action",
)
async def invoke_action(
    action_id: str,
    body: InvokeRequest,
    chat_service: ChatServiceDep,
    caller: OptionalCaller,
) -> ActionResult:
    """Validate parameters and run one action with its configured policies."""
    return await chat_service.invoke_action(action_id, body, caller=caller)
