"""Action registry: resolves configured actions into callable tools.

A registry is built once per configuration and mode and never mutated.
``RegistryManager`` owns the live registries and replaces them as a whole
on reload, so an invocation that already holds a registry keeps a
consistent view until it finishes.
"""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from string import Template
from types import MappingProxyType
from typing import Any

import httpx
import pydantic
from langchain_core.tools import StructuredTool
from limits import RateLimitItem
from pydantic import BaseModel

from commerce_assistant.core.exceptions import (
    ActionNotFoundError,
    AuthenticationRequiredError,
    ConfigError,
    ConfigErrorKind,
    HandlerNotFoundError,
    PermissionDeniedError,
    RateLimitExceededError,
)
from commerce_assistant.core.logging_config import action_context
from commerce_assistant.core.rate_limit import ActionRateLimiter, to_rate_limit_item
from commerce_assistant.integrations.commerce.client import CommerceBackend
from commerce_assistant.schemas.actions import (
    ActionDefinition,
    AssistantMode,
    ComposedImplementation,
    ConfigurationFile,
    ExternalImplementation,
    FunctionImplementation,
)
from commerce_assistant.schemas.chat import ActionResult, ToolSpec
from commerce_assistant.schemas.context import AssistantContext
from commerce_assistant.services.config_loader import apply_defaults
from commerce_assistant.services.error_handling import retry
from commerce_assistant.services.parameter_validation import (
    InputRules,
    build_parameters_model,
    validate_parameters,
)

logger = logging.getLogger(__name__)

ActionHandler = Callable[
    [dict[str, Any], AssistantContext, CommerceBackend], Awaitable[dict[str, Any]]
]

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

# Keys a handler may return that are lifted out of ``data``
_RESERVED_RESULT_KEYS = ("message", "ui")


@dataclass(frozen=True)
class RegisteredAction:
    """An action with its effective configuration and resolved executor."""

    definition: ActionDefinition
    params_model: type[BaseModel]
    handler: ActionHandler | None = None
    steps: tuple[str, ...] = ()
    input_rules: InputRules | None = None
    rate_limit: RateLimitItem | None = None

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def timeout_s(self) -> float:
        return self.definition.performance.timeout_ms / 1000

    def to_tool_spec(self) -> ToolSpec:
        return ToolSpec(
            name=self.definition.id,
            description=self.definition.description,
            category=self.definition.category,
            parameters=self.params_model.model_json_schema(),
        )


# === Build helpers ===


def _enabled_in_mode(action: ActionDefinition, mode: AssistantMode) -> bool:
    if not action.enabled:
        return False
    mode_settings = action.modes.for_mode(mode) if action.modes else None
    return mode_settings is None or mode_settings.enabled


def apply_mode_overrides(action: ActionDefinition, mode: AssistantMode) -> ActionDefinition:
    """Shallow-merge ``modes[mode].overrides`` on top of the base definition.

    Each override key replaces the whole top-level section it names.

    Raises:
        ConfigError: If the merged definition no longer validates.
    """
    mode_settings = action.modes.for_mode(mode) if action.modes else None
    if mode_settings is None or not mode_settings.overrides:
        return action

    merged = action.model_dump(by_alias=True, exclude_unset=True)
    merged.update(mode_settings.overrides)
    try:
        return ActionDefinition.model_validate(merged)
    except pydantic.ValidationError as e:
        errors = [
            f"action '{action.id}' {mode} override "
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise ConfigError(ConfigErrorKind.INVALID_OVERRIDE, errors) from e


def _prerequisites(action: ActionDefinition) -> list[str]:
    prerequisites = list(action.dependencies)
    if isinstance(action.implementation, ComposedImplementation):
        prerequisites.extend(action.implementation.steps)
    return prerequisites


def _exclude_unsatisfied(
    actions: dict[str, ActionDefinition], mode: AssistantMode
) -> dict[str, ActionDefinition]:
    """Drop actions whose dependencies or steps are unavailable, transitively."""
    available = dict(actions)
    changed = True
    while changed:
        changed = False
        for action_id, action in list(available.items()):
            missing = [p for p in _prerequisites(action) if p not in available]
            if missing:
                logger.warning(
                    "Excluding action %s from %s mode: unavailable prerequisites %s",
                    action_id,
                    mode,
                    ", ".join(missing),
                )
                del available[action_id]
                changed = True
    return available


def _check_composition_cycles(actions: Mapping[str, ActionDefinition]) -> None:
    """Raise ConfigError if composed actions reference each other in a loop."""
    visiting: set[str] = set()
    done: set[str] = set()

    def visit(action_id: str, path: list[str]) -> None:
        if action_id in done:
            return
        if action_id in visiting:
            cycle = " -> ".join([*path[path.index(action_id) :], action_id])
            raise ConfigError(ConfigErrorKind.COMPOSITION_CYCLE, [cycle])
        action = actions.get(action_id)
        if action is None or not isinstance(action.implementation, ComposedImplementation):
            done.add(action_id)
            return
        visiting.add(action_id)
        for step in action.implementation.steps:
            visit(step, [*path, action_id])
        visiting.discard(action_id)
        done.add(action_id)

    for action_id in actions:
        visit(action_id, [])


def _register(
    action: ActionDefinition,
    mode: AssistantMode,
    handlers: Mapping[str, ActionHandler],
) -> RegisteredAction:
    mode_settings = action.modes.for_mode(mode) if action.modes else None
    required_fields = mode_settings.required_fields if mode_settings else []

    handler: ActionHandler | None = None
    steps: tuple[str, ...] = ()
    implementation = action.implementation
    if isinstance(implementation, FunctionImplementation):
        name = implementation.handler or action.id
        if name not in handlers:
            raise HandlerNotFoundError(action.id, name)
        handler = handlers[name]
    elif isinstance(implementation, ComposedImplementation):
        steps = tuple(implementation.steps)

    security = action.security
    return RegisteredAction(
        definition=action,
        params_model=build_parameters_model(action.id, action.parameters, required_fields),
        handler=handler,
        steps=steps,
        input_rules=(
            InputRules(action.id, security.input_validation)
            if security.input_validation
            else None
        ),
        rate_limit=to_rate_limit_item(security.rate_limit) if security.rate_limit else None,
    )


# === Registry ===


class ActionRegistry:
    """Immutable mapping of action id to executable entry for one mode."""

    def __init__(
        self,
        mode: AssistantMode,
        actions: Mapping[str, RegisteredAction],
        commerce: CommerceBackend,
        *,
        rate_limiter: ActionRateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.mode = mode
        self._actions = MappingProxyType(dict(actions))
        self._commerce = commerce
        self._rate_limiter = rate_limiter or ActionRateLimiter()
        self._transport = transport
        self._tools = tuple(entry.to_tool_spec() for entry in self._actions.values())

    @classmethod
    def build(
        cls,
        config: ConfigurationFile,
        mode: AssistantMode,
        handlers: Mapping[str, ActionHandler],
        commerce: CommerceBackend,
        *,
        rate_limiter: ActionRateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ActionRegistry":
        """Resolve every action enabled in ``mode``.

        Merge order: globals, base fields, mode overrides, mode
        ``requiredFields``.

        Raises:
            ConfigError: On an invalid mode override or a composition cycle.
            HandlerNotFoundError: If a function action's handler is missing.
        """
        candidates: dict[str, ActionDefinition] = {}
        for action in config.actions:
            if not _enabled_in_mode(action, mode):
                continue
            effective = apply_mode_overrides(apply_defaults(action, config.globals), mode)
            if effective.enabled:
                candidates[action.id] = effective

        available = _exclude_unsatisfied(candidates, mode)
        _check_composition_cycles(available)

        entries = {
            action_id: _register(action, mode, handlers)
            for action_id, action in available.items()
        }
        logger.info("Built %s registry with %d actions", mode, len(entries))
        return cls(mode, entries, commerce, rate_limiter=rate_limiter, transport=transport)

    @property
    def actions(self) -> Mapping[str, RegisteredAction]:
        return self._actions

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def get(self, action_id: str) -> RegisteredAction:
        entry = self._actions.get(action_id)
        if entry is None:
            raise ActionNotFoundError(action_id, self.mode)
        return entry

    def get_tools(self) -> list[ToolSpec]:
        """Tools enabled in this registry's mode. Pure and stable."""
        return list(self._tools)

    def as_langchain_tools(
        self, context: AssistantContext, commerce: CommerceBackend | None = None
    ) -> list[StructuredTool]:
        """Wrap each action as a LangChain tool bound to ``context``.

        Returns tools for ``bind_tools()``; each returns a JSON string.
        """
        return [self._langchain_tool(entry, context, commerce) for entry in self._actions.values()]

    def _langchain_tool(
        self,
        entry: RegisteredAction,
        context: AssistantContext,
        commerce: CommerceBackend | None,
    ) -> StructuredTool:
        async def run(**kwargs: Any) -> str:
            result = await self.invoke(entry.id, kwargs, context, commerce=commerce)
            return json.dumps(
                {"data": result.data, "message": result.message}, default=str
            )

        return StructuredTool.from_function(
            coroutine=run,
            name=entry.id,
            description=entry.definition.description,
            args_schema=entry.params_model,
        )

    # --- Invocation ---

    async def invoke(
        self,
        action_id: str,
        params: Mapping[str, Any],
        context: AssistantContext,
        *,
        commerce: CommerceBackend | None = None,
    ) -> ActionResult:
        """Validate ``params`` and run the action under its policies.

        Checks run in order: lookup, authentication, permissions, input
        rules, parameter schema, rate limit. No handler or backend call
        happens unless all of them pass. Only requests that pass every
        other check count against the rate limit.

        Raises:
            ActionNotFoundError: Unknown or disabled in this mode.
            AuthenticationRequiredError: ``requiresAuth`` without a customer.
            PermissionDeniedError: Missing ``requiredPermissions``.
            RateLimitExceededError: Window for this caller is full.
            ValidationError: Parameters or input rules rejected.
            Exception: The handler's last error once retries are exhausted.
        """
        entry = self.get(action_id)
        with action_context(action_id):
            self._authorize(entry, context)
            if entry.input_rules is not None:
                entry.input_rules.check(params)
            validated = validate_parameters(action_id, entry.params_model, params)
            self._consume_rate_limit(entry, context)

            observability = entry.definition.observability.logging
            level = LOG_LEVELS[observability.level]
            extra: dict[str, Any] = {"mode": str(self.mode)}
            if observability.include_params:
                extra["params"] = validated

            start = time.perf_counter()
            try:
                data = await self._execute(entry, validated, context, commerce or self._commerce)
            except Exception:
                logger.error(
                    "Action %s failed after %.1fms",
                    action_id,
                    (time.perf_counter() - start) * 1000,
                    extra=extra,
                    exc_info=True,
                )
                raise
            duration_ms = (time.perf_counter() - start) * 1000

            if observability.include_result:
                extra["result"] = data
            logger.log(level, "Action %s completed in %.1fms", action_id, duration_ms, extra=extra)
            return self._to_result(entry, data, duration_ms)

    def _authorize(self, entry: RegisteredAction, context: AssistantContext) -> None:
        security = entry.definition.security
        if security.requires_auth and not context.customer_id:
            raise AuthenticationRequiredError(entry.id)
        if security.required_permissions:
            missing = set(security.required_permissions) - context.permissions
            if missing:
                raise PermissionDeniedError(entry.id, sorted(missing))

    def _consume_rate_limit(self, entry: RegisteredAction, context: AssistantContext) -> None:
        if entry.rate_limit is not None and not self._rate_limiter.hit(
            entry.rate_limit, entry.id, context.caller_key
        ):
            raise RateLimitExceededError(entry.id, str(entry.rate_limit))

    async def _execute(
        self,
        entry: RegisteredAction,
        params: dict[str, Any],
        context: AssistantContext,
        commerce: CommerceBackend,
    ) -> dict[str, Any]:
        if entry.steps:
            # Steps carry their own retries; the pipeline only gets a deadline
            async with asyncio.timeout(entry.timeout_s):
                return await self._run_pipeline(entry, params, context, commerce)

        performance = entry.definition.performance

        async def attempt() -> dict[str, Any]:
            async with asyncio.timeout(entry.timeout_s):
                return await self._call(entry, params, context, commerce)

        return await retry(
            attempt,
            max_retries=performance.retries + 1,
            backoff_ms=performance.backoff_ms,
        )

    async def _run_pipeline(
        self,
        entry: RegisteredAction,
        params: dict[str, Any],
        context: AssistantContext,
        commerce: CommerceBackend,
    ) -> dict[str, Any]:
        current = dict(params)
        data: dict[str, Any] = {}
        for step in entry.steps:
            result = await self.invoke(step, current, context, commerce=commerce)
            data = dict(result.data)
            if result.message is not None:
                data["message"] = result.message
            if result.ui is not None:
                data["ui"] = result.ui
            current = {**current, **result.data}
            logger.debug("Composed action %s finished step %s", entry.id, step)
        return data

    async def _call(
        self,
        entry: RegisteredAction,
        params: dict[str, Any],
        context: AssistantContext,
        commerce: CommerceBackend,
    ) -> dict[str, Any]:
        implementation = entry.definition.implementation
        if isinstance(implementation, ExternalImplementation):
            return await self._call_external(implementation, entry, params, context)
        if entry.handler is None:
            raise HandlerNotFoundError(entry.id, entry.id)
        return await entry.handler(params, context, commerce)

    async def _call_external(
        self,
        implementation: ExternalImplementation,
        entry: RegisteredAction,
        params: dict[str, Any],
        context: AssistantContext,
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if context.auth_token:
            headers["Authorization"] = f"Bearer {context.auth_token}"

        request_kwargs: dict[str, Any]
        if implementation.method == "GET":
            request_kwargs = {
                "params": {
                    k: v for k, v in params.items() if isinstance(v, str | int | float | bool)
                }
            }
        else:
            request_kwargs = {
                "json": {
                    "action": entry.id,
                    "params": params,
                    "context": context.model_dump(
                        mode="json",
                        include={"mode", "session_id", "customer_id", "locale", "currency"},
                    ),
                }
            }

        async with httpx.AsyncClient(
            headers=headers, timeout=entry.timeout_s, transport=self._transport
        ) as client:
            response = await client.request(
                implementation.method, implementation.endpoint, **request_kwargs
            )
            response.raise_for_status()
            if not response.content:
                return {}
            body = response.json()
        return body if isinstance(body, dict) else {"result": body}

    def _to_result(
        self, entry: RegisteredAction, data: dict[str, Any], duration_ms: float
    ) -> ActionResult:
        payload = {k: v for k, v in data.items() if k not in _RESERVED_RESULT_KEYS}
        message = data.get("message") if isinstance(data.get("message"), str) else None
        ui = data.get("ui") if isinstance(data.get("ui"), dict) else None

        response = entry.definition.response
        if response.template:
            message = Template(response.template).safe_substitute(payload)

        return ActionResult(
            action_id=entry.id,
            data=payload,
            format=response.format,
            message=message,
            ui=ui,
            duration_ms=round(duration_ms, 2),
        )


# === Manager ===


class RegistryManager:
    """Holds the live per-mode registries and swaps them on reload."""

    def __init__(
        self,
        handlers: Mapping[str, ActionHandler],
        commerce: CommerceBackend,
        *,
        rate_limiter: ActionRateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.handlers = MappingProxyType(dict(handlers))
        self.commerce = commerce
        self.rate_limiter = rate_limiter or ActionRateLimiter()
        self._transport = transport
        self._registries: Mapping[AssistantMode, ActionRegistry] = MappingProxyType({})
        self.config: ConfigurationFile | None = None
        self.loaded_at: datetime | None = None

    @property
    def is_loaded(self) -> bool:
        return bool(self._registries)

    def load(self, config: ConfigurationFile) -> None:
        """Build registries for every mode, then swap them in together.

        If any build fails the previous registries stay active.
        """
        registries = {
            mode: ActionRegistry.build(
                config,
                mode,
                self.handlers,
                self.commerce,
                rate_limiter=self.rate_limiter,
                transport=self._transport,
            )
            for mode in AssistantMode
        }
        self._registries = MappingProxyType(registries)
        self.config = config
        self.loaded_at = datetime.now(UTC)
        logger.info("Action registries loaded (config version %s)", config.version)

    def get(self, mode: AssistantMode) -> ActionRegistry:
        registry = self._registries.get(mode)
        if registry is None:
            raise RuntimeError("Action registry has not been loaded")
        return registry
