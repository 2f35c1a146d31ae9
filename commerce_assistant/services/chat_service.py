"""Chat service running one assistant turn as a stream of events."""

import logging
import time
import uuid
from collections.abc import AsyncIterator
from datetime import UTC, datetime

from commerce_assistant.core.config import settings
from commerce_assistant.integrations.commerce.client import CommerceBackend, CommerceClient
from commerce_assistant.schemas.actions import AssistantMode
from commerce_assistant.schemas.chat import (
    ActionResult,
    ChatMetadata,
    ChatRequest,
    ChatResponse,
    InvokeRequest,
    StreamEvent,
)
from commerce_assistant.schemas.context import (
    AssistantContext,
    AssistantMessage,
    AssistantPreferences,
    Caller,
    LastAction,
)
from commerce_assistant.services.action_registry import RegistryManager
from commerce_assistant.services.context_service import ContextAssembler
from commerce_assistant.services.error_handling import classify
from commerce_assistant.services.mode_detection import analyze_conversation
from commerce_assistant.services.streaming import make_event

logger = logging.getLogger(__name__)


class ChatService:
    """Executes the actions chosen for a turn and reports them as events.

    Event order per turn: ``metadata``, then for each action an ``actions``
    event followed by ``ui`` and ``content`` when the result has them, and
    finally ``done``. A failing action yields one ``error`` event and no
    further actions run.

    Customer identity and permissions come from ``caller``, the verified
    bearer token, never from the request body.
    """

    def __init__(
        self,
        registries: RegistryManager,
        commerce: CommerceBackend,
        *,
        preferences: AssistantPreferences | None = None,
    ) -> None:
        self.registries = registries
        self.commerce = commerce
        self.preferences = preferences or AssistantPreferences(
            mode=AssistantMode(settings.default_mode)
        )

    def _commerce_for(self, caller: Caller | None) -> CommerceBackend:
        if caller is not None and caller.token and isinstance(self.commerce, CommerceClient):
            return self.commerce.with_auth(caller.token)
        return self.commerce

    def _fixed_mode(
        self, mode: AssistantMode | None, caller: Caller | None
    ) -> AssistantMode | None:
        """Mode that needs no inference: explicit, or implied by a business account."""
        if mode is not None:
            return mode
        if caller is not None and caller.role == "business":
            return AssistantMode.B2B
        return None

    def _infer_mode(self, context: AssistantContext) -> AssistantMode:
        if not settings.mode_detection_enabled:
            return self.preferences.mode
        detection = analyze_conversation(
            context.message_history,
            previous_mode=self.preferences.mode,
            cart_items=context.cart_items,
        )
        if detection.mode is None or detection.confidence < settings.mode_detection_threshold:
            return self.preferences.mode
        if detection.mode != self.preferences.mode:
            logger.info(
                "Detected %s mode (confidence %.2f): %s",
                detection.mode,
                detection.confidence,
                ", ".join(detection.indicators),
            )
        return detection.mode

    async def _build_context(
        self,
        request: ChatRequest,
        session_id: str,
        commerce: CommerceBackend,
        caller: Caller | None,
    ) -> AssistantContext:
        assembler = ContextAssembler(commerce, preferences=self.preferences)
        history = [
            *request.history,
            AssistantMessage(role="user", content=request.message, created_at=datetime.now(UTC)),
        ]
        fixed_mode = self._fixed_mode(request.mode, caller)
        context = await assembler.build(
            history=history,
            mode=fixed_mode,
            session_id=session_id,
            customer_id=caller.customer_id if caller else None,
            permissions=caller.permissions if caller else (),
            current_page=request.context.current_page,
            locale=request.context.locale,
            currency=request.context.currency,
            auth_token=caller.token if caller else None,
        )
        if fixed_mode is None:
            context = context.model_copy(update={"mode": self._infer_mode(context)})
        return context

    async def stream_turn(
        self, request: ChatRequest, *, caller: Caller | None = None
    ) -> AsyncIterator[StreamEvent]:
        start = time.perf_counter()
        session_id = request.session_id or str(uuid.uuid4())
        commerce = self._commerce_for(caller)
        context = await self._build_context(request, session_id, commerce, caller)
        mode = context.mode
        # Snapshot: a reload during this turn does not affect it
        registry = self.registries.get(mode)

        yield make_event(
            "metadata",
            {
                "session_id": session_id,
                "mode": str(mode),
                "version": settings.version,
                "tools": [tool.name for tool in registry.get_tools()],
            },
        )

        for call in request.actions:
            try:
                result = await registry.invoke(call.id, call.params, context, commerce=commerce)
            except Exception as e:
                classified = classify(e)
                logger.warning(
                    "Action %s failed in session %s: [%s] %s",
                    call.id,
                    session_id,
                    classified.code,
                    classified.technical_message,
                )
                yield make_event(
                    "error",
                    {
                        "message": classified.user_message,
                        "code": str(classified.code),
                        "recoverable": classified.recoverable,
                        "action": call.id,
                    },
                )
                break

            yield make_event("actions", [result.model_dump(mode="json")])
            if result.ui is not None:
                yield make_event("ui", result.ui)
            if result.message:
                yield make_event("content", {"text": result.message})
            context = context.model_copy(
                update={"last_action": LastAction(type=call.id, payload=result.data)}
            )

        yield make_event(
            "done",
            {"processing_time_ms": round((time.perf_counter() - start) * 1000, 2)},
        )

    async def invoke_action(
        self, action_id: str, request: InvokeRequest, *, caller: Caller | None = None
    ) -> ActionResult:
        """Invoke one action outside a chat turn. Errors propagate to the caller."""
        mode = self._fixed_mode(request.mode, caller) or self.preferences.mode
        registry = self.registries.get(mode)
        commerce = self._commerce_for(caller)
        assembler = ContextAssembler(commerce, preferences=self.preferences)
        context = await assembler.build(
            mode=mode,
            session_id=request.session_id,
            customer_id=caller.customer_id if caller else None,
            permissions=caller.permissions if caller else (),
            current_page=request.context.current_page,
            locale=request.context.locale,
            currency=request.context.currency,
            auth_token=caller.token if caller else None,
        )
        return await registry.invoke(action_id, request.params, context, commerce=commerce)

    async def respond(self, request: ChatRequest, *, caller: Caller | None = None) -> ChatResponse:
        """Run a turn and aggregate its events into one response."""
        start = time.perf_counter()
        metadata: dict = {}
        texts: list[str] = []
        results: list[ActionResult] = []
        ui: list[dict] = []
        error: dict | None = None

        async for event in self.stream_turn(request, caller=caller):
            match event.type:
                case "metadata":
                    metadata = event.data
                case "actions":
                    results.extend(ActionResult.model_validate(r) for r in event.data)
                case "ui":
                    ui.append(event.data)
                case "content":
                    texts.append(event.data["text"])
                case "error":
                    error = event.data
                    texts.append(event.data["message"])

        return ChatResponse(
            message="\n\n".join(texts),
            actions=results,
            ui=ui,
            error=error,
            metadata=ChatMetadata(
                session_id=metadata["session_id"],
                mode=AssistantMode(metadata["mode"]),
                processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
                version=metadata["version"],
            ),
        )
