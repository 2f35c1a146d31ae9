"""Tests for the action registry and registry manager.

Covers:
- Building per-mode registries (enablement, overrides, exclusions, cycles)
- The invocation pipeline (auth, permissions, rate limits, validation)
- Timeouts, retries and response templates
- Composed and external actions
- LangChain tool wrapping
- Atomic registry swaps on reload
"""

import asyncio
import dataclasses
import json
from collections.abc import Mapping
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from commerce_assistant.core.exceptions import (
    ActionNotFoundError,
    AuthenticationRequiredError,
    ConfigError,
    ConfigErrorKind,
    HandlerNotFoundError,
    PermissionDeniedError,
    RateLimitExceededError,
    ValidationError,
)
from commerce_assistant.schemas.actions import AssistantMode
from commerce_assistant.schemas.context import AssistantContext
from commerce_assistant.services.action_registry import ActionRegistry, RegistryManager
from commerce_assistant.services.config_loader import validate_configuration
from commerce_assistant.services.handlers import DEFAULT_HANDLERS


def _build(
    config_dict: dict[str, Any],
    mode: AssistantMode,
    commerce: Any,
    handlers: Mapping[str, Any] = DEFAULT_HANDLERS,
    **kwargs: Any,
) -> ActionRegistry:
    config = validate_configuration(config_dict)
    return ActionRegistry.build(config, mode, handlers, commerce, **kwargs)


def _action(config_dict: dict[str, Any], action_id: str) -> dict[str, Any]:
    return next(a for a in config_dict["actions"] if a["id"] == action_id)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://commerce.test/unified/getCart")
    return httpx.HTTPStatusError(
        f"HTTP {status}", request=request, response=httpx.Response(status, request=request)
    )


B2B_CONTEXT = AssistantContext(
    session_id="session-1", customer_id="buyer-1", mode=AssistantMode.B2B
)


# ---------------------------------------------------------------------------
# Tests: building registries
# ---------------------------------------------------------------------------


class TestBuild:
    """Tests for resolving configured actions into a registry."""

    def test_b2c_tools(self, b2c_registry: ActionRegistry) -> None:
        names = [tool.name for tool in b2c_registry.get_tools()]

        assert names == ["search", "getCart", "addToCart", "placeOrder", "buyNow"]
        assert "getBulkPricing" not in b2c_registry

    def test_b2b_tools(self, b2b_registry: ActionRegistry) -> None:
        names = [tool.name for tool in b2b_registry.get_tools()]

        assert names == ["search", "getCart", "addToCart", "placeOrder", "getBulkPricing"]
        assert "buyNow" not in b2b_registry

    def test_get_tools_is_stable(self, b2c_registry: ActionRegistry) -> None:
        first = b2c_registry.get_tools()
        first.clear()

        assert b2c_registry.get_tools() == b2c_registry.get_tools()
        assert len(b2c_registry.get_tools()) == len(b2c_registry)

    def test_tool_spec_carries_json_schema(self, b2c_registry: ActionRegistry) -> None:
        search = next(t for t in b2c_registry.get_tools() if t.name == "search")

        assert search.category == "search"
        assert search.description == "Search the catalog"
        assert search.parameters["required"] == ["query"]
        assert "limit" in search.parameters["properties"]

    def test_globally_disabled_action(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock
    ) -> None:
        _action(config_dict, "search")["enabled"] = False

        for mode in AssistantMode:
            assert "search" not in _build(config_dict, mode, fake_commerce)

    def test_missing_handler(self, config_dict: dict[str, Any], fake_commerce: AsyncMock) -> None:
        handlers = {k: v for k, v in DEFAULT_HANDLERS.items() if k != "get_cart"}

        with pytest.raises(HandlerNotFoundError) as exc_info:
            _build(config_dict, AssistantMode.B2C, fake_commerce, handlers)

        assert exc_info.value.action_id == "getCart"

    def test_handler_defaults_to_action_id(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock
    ) -> None:
        _action(config_dict, "getCart")["implementation"] = {"type": "function"}
        handlers = {**DEFAULT_HANDLERS, "getCart": DEFAULT_HANDLERS["get_cart"]}

        registry = _build(config_dict, AssistantMode.B2C, fake_commerce, handlers)

        assert registry.get("getCart").handler is DEFAULT_HANDLERS["get_cart"]

    def test_mode_override_replaces_field(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock
    ) -> None:
        _action(config_dict, "search")["modes"] = {
            "b2b": {"overrides": {"description": "Search the trade catalog"}}
        }

        b2b = _build(config_dict, AssistantMode.B2B, fake_commerce)
        b2c = _build(config_dict, AssistantMode.B2C, fake_commerce)

        assert b2b.get("search").definition.description == "Search the trade catalog"
        assert b2c.get("search").definition.description == "Search the catalog"

    def test_override_can_disable(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock
    ) -> None:
        _action(config_dict, "search")["modes"] = {"b2b": {"overrides": {"enabled": False}}}

        assert "search" not in _build(config_dict, AssistantMode.B2B, fake_commerce)

    def test_invalid_override(self, config_dict: dict[str, Any], fake_commerce: AsyncMock) -> None:
        _action(config_dict, "search")["modes"] = {
            "b2b": {"overrides": {"category": "gardening"}}
        }

        with pytest.raises(ConfigError) as exc_info:
            _build(config_dict, AssistantMode.B2B, fake_commerce)

        assert exc_info.value.kind == ConfigErrorKind.INVALID_OVERRIDE

    def test_unavailable_dependency_excludes_dependents(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock
    ) -> None:
        """Disabling getCart removes addToCart and, through it, buyNow."""
        _action(config_dict, "getCart")["modes"] = {"b2c": {"enabled": False}}

        registry = _build(config_dict, AssistantMode.B2C, fake_commerce)

        assert "getCart" not in registry
        assert "addToCart" not in registry
        assert "buyNow" not in registry
        assert "search" in registry

    def test_composition_cycle(self, config_dict: dict[str, Any], fake_commerce: AsyncMock) -> None:
        config_dict["actions"].extend(
            [
                {
                    "id": "loopA",
                    "name": "A",
                    "description": "A",
                    "category": "support",
                    "implementation": {"type": "composed", "steps": ["getCart", "loopB"]},
                },
                {
                    "id": "loopB",
                    "name": "B",
                    "description": "B",
                    "category": "support",
                    "implementation": {"type": "composed", "steps": ["loopA"]},
                },
            ]
        )

        with pytest.raises(ConfigError) as exc_info:
            _build(config_dict, AssistantMode.B2C, fake_commerce)

        assert exc_info.value.kind == ConfigErrorKind.COMPOSITION_CYCLE
        assert "loopA" in exc_info.value.errors[0]


# ---------------------------------------------------------------------------
# Tests: invocation
# ---------------------------------------------------------------------------


class TestInvoke:
    """Tests for the validate-authorize-execute pipeline."""

    async def test_search_requires_query(
        self,
        b2c_registry: ActionRegistry,
        context: AssistantContext,
        fake_commerce: AsyncMock,
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await b2c_registry.invoke("search", {}, context)

        assert any(e.startswith("query") for e in exc_info.value.errors)
        fake_commerce.search_products.assert_not_awaited()

    async def test_search_succeeds(
        self,
        b2c_registry: ActionRegistry,
        context: AssistantContext,
        fake_commerce: AsyncMock,
    ) -> None:
        result = await b2c_registry.invoke("search", {"query": "boots"}, context)

        fake_commerce.search_products.assert_awaited_once_with(
            "boots", page_size=10, sort_by=None
        )
        assert result.action_id == "search"
        assert result.data["total"] == 2
        assert result.data["products"][0]["name"] == "Hiking Boots"
        assert result.message == "Found 2 product(s) matching 'boots'."
        assert result.ui is not None
        assert result.ui["component"] == "ProductGrid"
        assert "message" not in result.data
        assert "ui" not in result.data

    async def test_unknown_action(
        self, b2c_registry: ActionRegistry, context: AssistantContext
    ) -> None:
        with pytest.raises(ActionNotFoundError):
            await b2c_registry.invoke("teleport", {}, context)

    async def test_action_disabled_in_mode(
        self, b2c_registry: ActionRegistry, context: AssistantContext
    ) -> None:
        with pytest.raises(ActionNotFoundError) as exc_info:
            await b2c_registry.invoke(
                "getBulkPricing", {"productId": "p", "quantities": [10]}, context
            )

        assert exc_info.value.mode == AssistantMode.B2C

    async def test_place_order_b2c_without_cost_center(
        self,
        b2c_registry: ActionRegistry,
        context: AssistantContext,
        fake_commerce: AsyncMock,
    ) -> None:
        result = await b2c_registry.invoke("placeOrder", {}, context)

        assert result.data["order_id"] == "order-1"
        fake_commerce.place_order.assert_awaited_once_with(cost_center_id=None)

    async def test_place_order_b2b_requires_cost_center(
        self, b2b_registry: ActionRegistry, fake_commerce: AsyncMock
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await b2b_registry.invoke("placeOrder", {}, B2B_CONTEXT)

        assert any("costCenterId" in e for e in exc_info.value.errors)
        fake_commerce.place_order.assert_not_awaited()

    async def test_place_order_b2b_with_cost_center(
        self, b2b_registry: ActionRegistry, fake_commerce: AsyncMock
    ) -> None:
        result = await b2b_registry.invoke("placeOrder", {"costCenterId": "CC-1"}, B2B_CONTEXT)

        fake_commerce.place_order.assert_awaited_once_with(cost_center_id="CC-1")
        assert result.data["cost_center_id"] == "CC-1"

    async def test_requires_auth(
        self,
        config_dict: dict[str, Any],
        fake_commerce: AsyncMock,
    ) -> None:
        _action(config_dict, "placeOrder")["security"] = {"requiresAuth": True}
        registry = _build(config_dict, AssistantMode.B2C, fake_commerce)

        with pytest.raises(AuthenticationRequiredError):
            await registry.invoke("placeOrder", {}, AssistantContext(session_id="anon"))

        fake_commerce.place_order.assert_not_awaited()
        result = await registry.invoke("placeOrder", {}, AssistantContext(customer_id="c-1"))
        assert result.data["order_id"] == "order-1"

    async def test_required_permissions(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock
    ) -> None:
        _action(config_dict, "getBulkPricing")["security"] = {
            "requiredPermissions": ["b2b:pricing"]
        }
        registry = _build(config_dict, AssistantMode.B2B, fake_commerce)
        params = {"productId": "prod-boots", "quantities": [100, 500]}

        with pytest.raises(PermissionDeniedError) as exc_info:
            await registry.invoke("getBulkPricing", params, B2B_CONTEXT)
        assert exc_info.value.missing == ["b2b:pricing"]

        allowed = B2B_CONTEXT.model_copy(update={"permissions": frozenset({"b2b:pricing"})})
        result = await registry.invoke("getBulkPricing", params, allowed)

        assert len(result.data["tiers"]) == 2
        fake_commerce.get_bulk_pricing.assert_awaited_once_with("prod-boots", [100, 500])

    async def test_rate_limit_per_caller(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock
    ) -> None:
        _action(config_dict, "search")["security"] = {
            "rateLimit": {"requests": 2, "windowMs": 60000}
        }
        registry = _build(config_dict, AssistantMode.B2C, fake_commerce)
        alice = AssistantContext(customer_id="alice")
        bob = AssistantContext(customer_id="bob")

        await registry.invoke("search", {"query": "a"}, alice)
        await registry.invoke("search", {"query": "b"}, alice)
        with pytest.raises(RateLimitExceededError):
            await registry.invoke("search", {"query": "c"}, alice)

        await registry.invoke("search", {"query": "d"}, bob)
        assert fake_commerce.search_products.await_count == 3

    async def test_rejected_requests_do_not_consume_rate_limit(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock
    ) -> None:
        """Requests refused by input rules or the schema leave the window untouched."""
        _action(config_dict, "search")["security"] = {
            "rateLimit": {"requests": 1, "windowMs": 60000},
            "inputValidation": {"bannedPatterns": ["<script"]},
        }
        registry = _build(config_dict, AssistantMode.B2C, fake_commerce)
        alice = AssistantContext(customer_id="alice")

        with pytest.raises(ValidationError):
            await registry.invoke("search", {}, alice)
        with pytest.raises(ValidationError):
            await registry.invoke("search", {"query": "<script>"}, alice)

        await registry.invoke("search", {"query": "boots"}, alice)
        with pytest.raises(RateLimitExceededError):
            await registry.invoke("search", {"query": "boots"}, alice)
        fake_commerce.search_products.assert_awaited_once()

    async def test_function_action_without_handler(
        self, b2c_registry: ActionRegistry, fake_commerce: AsyncMock, context: AssistantContext
    ) -> None:
        entry = dataclasses.replace(b2c_registry.get("getCart"), handler=None)
        registry = ActionRegistry(AssistantMode.B2C, {"getCart": entry}, fake_commerce)

        with pytest.raises(HandlerNotFoundError):
            await registry.invoke("getCart", {}, context)

    async def test_input_rules_checked_before_handler(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock
    ) -> None:
        _action(config_dict, "search")["security"] = {
            "inputValidation": {"bannedPatterns": ["<script"]}
        }
        registry = _build(config_dict, AssistantMode.B2C, fake_commerce)

        with pytest.raises(ValidationError):
            await registry.invoke(
                "search", {"query": "<script>alert(1)</script>"}, AssistantContext()
            )

        fake_commerce.search_products.assert_not_awaited()

    async def test_response_template(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock, context: AssistantContext
    ) -> None:
        _action(config_dict, "placeOrder")["response"] = {
            "format": "text",
            "template": "Order ${order_id} is ${status}. ${missing}",
        }
        registry = _build(config_dict, AssistantMode.B2C, fake_commerce)

        result = await registry.invoke("placeOrder", {}, context)

        assert result.format == "text"
        assert result.message == "Order order-1 is created. ${missing}"


# ---------------------------------------------------------------------------
# Tests: timeouts and retries
# ---------------------------------------------------------------------------


class TestExecutionPolicies:
    """Tests for performance.timeoutMs, retries and backoffMs."""

    async def test_retries_recoverable_failures(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock, context: AssistantContext
    ) -> None:
        _action(config_dict, "getCart")["performance"] = {"retries": 2, "backoffMs": 0}
        flaky = AsyncMock(side_effect=[_status_error(503), _status_error(503), {"items": []}])
        handlers = {**DEFAULT_HANDLERS, "get_cart": flaky}
        registry = _build(config_dict, AssistantMode.B2C, fake_commerce, handlers)

        result = await registry.invoke("getCart", {}, context)

        assert result.data == {"items": []}
        assert flaky.await_count == 3

    async def test_no_retries_by_default(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock, context: AssistantContext
    ) -> None:
        flaky = AsyncMock(side_effect=_status_error(503))
        handlers = {**DEFAULT_HANDLERS, "get_cart": flaky}
        registry = _build(config_dict, AssistantMode.B2C, fake_commerce, handlers)

        with pytest.raises(httpx.HTTPStatusError):
            await registry.invoke("getCart", {}, context)

        flaky.assert_awaited_once()

    async def test_auth_failures_not_retried(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock, context: AssistantContext
    ) -> None:
        _action(config_dict, "getCart")["performance"] = {"retries": 3, "backoffMs": 0}
        flaky = AsyncMock(side_effect=_status_error(401))
        handlers = {**DEFAULT_HANDLERS, "get_cart": flaky}
        registry = _build(config_dict, AssistantMode.B2C, fake_commerce, handlers)

        with pytest.raises(httpx.HTTPStatusError):
            await registry.invoke("getCart", {}, context)

        flaky.assert_awaited_once()

    async def test_timeout(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock, context: AssistantContext
    ) -> None:
        async def slow(*_args: Any) -> dict[str, Any]:
            await asyncio.sleep(5)
            return {}

        _action(config_dict, "getCart")["performance"] = {"timeoutMs": 20}
        handlers = {**DEFAULT_HANDLERS, "get_cart": slow}
        registry = _build(config_dict, AssistantMode.B2C, fake_commerce, handlers)

        with pytest.raises(TimeoutError):
            await registry.invoke("getCart", {}, context)


# ---------------------------------------------------------------------------
# Tests: composed and external actions
# ---------------------------------------------------------------------------


class TestComposedActions:
    async def test_runs_steps_in_order(
        self,
        b2c_registry: ActionRegistry,
        context: AssistantContext,
        fake_commerce: AsyncMock,
    ) -> None:
        result = await b2c_registry.invoke("buyNow", {"productId": "prod-boots"}, context)

        fake_commerce.add_cart_line_item.assert_awaited_once_with("prod-boots", 1, sku=None)
        fake_commerce.place_order.assert_awaited_once_with(cost_center_id=None)
        assert result.action_id == "buyNow"
        assert result.data["order_id"] == "order-1"
        assert result.message == "Your order order-1 has been placed."
        assert result.ui == {"component": "OrderConfirmation", "data": {"orderId": "order-1"}}

    async def test_step_failure_stops_pipeline(
        self,
        b2c_registry: ActionRegistry,
        context: AssistantContext,
        fake_commerce: AsyncMock,
    ) -> None:
        fake_commerce.add_cart_line_item.side_effect = _status_error(404)

        with pytest.raises(httpx.HTTPStatusError):
            await b2c_registry.invoke("buyNow", {"productId": "missing"}, context)

        fake_commerce.place_order.assert_not_awaited()

    async def test_step_validation_applies(
        self, b2c_registry: ActionRegistry, context: AssistantContext
    ) -> None:
        with pytest.raises(ValidationError):
            await b2c_registry.invoke("buyNow", {}, context)


class TestExternalActions:
    def _config(self, config_dict: dict[str, Any], method: str) -> dict[str, Any]:
        config_dict["actions"].append(
            {
                "id": "trackShipment",
                "name": "Track shipment",
                "description": "Track an order shipment",
                "category": "support",
                "parameters": {"orderId": {"type": "string", "required": True}},
                "implementation": {
                    "type": "external",
                    "endpoint": "https://logistics.test/track",
                    "method": method,
                },
            }
        )
        return config_dict

    async def test_post_sends_action_params_and_context(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock
    ) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"status": "shipped", "message": "On its way"})

        registry = _build(
            self._config(config_dict, "POST"),
            AssistantMode.B2C,
            fake_commerce,
            transport=httpx.MockTransport(handler),
        )
        context = AssistantContext(session_id="s-1", auth_token="secret")

        result = await registry.invoke("trackShipment", {"orderId": "o-1"}, context)

        assert result.data == {"status": "shipped"}
        assert result.message == "On its way"
        request = captured[0]
        assert request.headers["Authorization"] == "Bearer secret"
        body = json.loads(request.content)
        assert body["action"] == "trackShipment"
        assert body["params"] == {"orderId": "o-1"}
        assert body["context"]["session_id"] == "s-1"
        assert body["context"]["mode"] == "b2c"
        assert "auth_token" not in body["context"]

    async def test_get_sends_query_params(
        self, config_dict: dict[str, Any], fake_commerce: AsyncMock
    ) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json=["in transit"])

        registry = _build(
            self._config(config_dict, "GET"),
            AssistantMode.B2C,
            fake_commerce,
            transport=httpx.MockTransport(handler),
        )

        result = await registry.invoke("trackShipment", {"orderId": "o-1"}, AssistantContext())

        assert captured[0].method == "GET"
        assert captured[0].url.params["orderId"] == "o-1"
        assert "Authorization" not in captured[0].headers
        assert result.data == {"result": ["in transit"]}


# ---------------------------------------------------------------------------
# Tests: LangChain tools
# ---------------------------------------------------------------------------


class TestLangchainTools:
    def test_one_tool_per_action(
        self, b2c_registry: ActionRegistry, context: AssistantContext
    ) -> None:
        tools = b2c_registry.as_langchain_tools(context)

        assert [t.name for t in tools] == [t.name for t in b2c_registry.get_tools()]
        assert tools[0].description == "Search the catalog"

    async def test_tool_invokes_action(
        self,
        b2c_registry: ActionRegistry,
        context: AssistantContext,
        fake_commerce: AsyncMock,
    ) -> None:
        search = b2c_registry.as_langchain_tools(context)[0]

        output = await search.ainvoke({"query": "boots"})

        payload = json.loads(output)
        assert payload["data"]["total"] == 2
        assert payload["message"] == "Found 2 product(s) matching 'boots'."
        fake_commerce.search_products.assert_awaited_once()


# ---------------------------------------------------------------------------
# Tests: RegistryManager
# ---------------------------------------------------------------------------


class TestRegistryManager:
    """Tests for loading and atomically swapping registries."""

    def test_get_before_load(self, fake_commerce: AsyncMock) -> None:
        manager = RegistryManager(DEFAULT_HANDLERS, fake_commerce)

        assert manager.is_loaded is False
        with pytest.raises(RuntimeError):
            manager.get(AssistantMode.B2C)

    def test_load_builds_every_mode(self, registry_manager: RegistryManager) -> None:
        assert registry_manager.is_loaded
        assert registry_manager.config is not None
        assert registry_manager.loaded_at is not None
        assert registry_manager.get(AssistantMode.B2C).mode == AssistantMode.B2C
        assert registry_manager.get(AssistantMode.B2B).mode == AssistantMode.B2B

    async def test_reload_swaps_registries(
        self,
        registry_manager: RegistryManager,
        config_dict: dict[str, Any],
        context: AssistantContext,
    ) -> None:
        old = registry_manager.get(AssistantMode.B2C)
        config_dict["version"] = "2.0.0"
        _action(config_dict, "search")["enabled"] = False

        registry_manager.load(validate_configuration(config_dict))

        new = registry_manager.get(AssistantMode.B2C)
        assert new is not old
        assert "search" not in new
        assert registry_manager.config is not None
        assert registry_manager.config.version == "2.0.0"
        # A caller holding the old registry keeps a consistent view
        result = await old.invoke("search", {"query": "boots"}, context)
        assert result.data["total"] == 2

    def test_failed_build_keeps_previous(
        self, registry_manager: RegistryManager, config_dict: dict[str, Any]
    ) -> None:
        before = {mode: registry_manager.get(mode) for mode in AssistantMode}
        _action(config_dict, "getCart")["implementation"] = {
            "type": "function",
            "handler": "does_not_exist",
        }

        with pytest.raises(HandlerNotFoundError):
            registry_manager.load(validate_configuration(config_dict))

        for mode in AssistantMode:
            assert registry_manager.get(mode) is before[mode]
        assert registry_manager.config is not None
        assert registry_manager.config.version == "1.0.0"
