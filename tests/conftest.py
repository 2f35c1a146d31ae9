"""Pytest configuration and fixtures for the commerce assistant test suite.

Provides:
- A small action configuration (dict and on-disk JSON) covering function,
  composed and mode-specific actions
- A fake commerce backend (AsyncMock) with a realistic cart
- Registry and registry-manager fixtures built from the sample config
- ASGI test clients with the registry manager overridden
- A sign-in helper standing in for bearer token verification
- Disabled route rate limiting
"""

import copy
import json
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from commerce_assistant.core.auth import get_optional_caller
from commerce_assistant.core.deps import get_registry_manager
from commerce_assistant.core.rate_limit import limiter
from commerce_assistant.integrations.commerce.client import CommerceClient
from commerce_assistant.main import app
from commerce_assistant.schemas.actions import AssistantMode, ConfigurationFile
from commerce_assistant.schemas.context import AssistantContext, Caller
from commerce_assistant.services.action_registry import ActionRegistry, RegistryManager
from commerce_assistant.services.config_loader import validate_configuration
from commerce_assistant.services.handlers import DEFAULT_HANDLERS

# ---------------------------------------------------------------------------
# Disable route rate limiting globally for tests
# ---------------------------------------------------------------------------
limiter.enabled = False

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
TEST_CUSTOMER_ID = "customer-1"
TEST_SESSION_ID = "session-1"
TEST_TOKEN = "customer-token"

SAMPLE_CART: dict[str, Any] = {
    "id": "cart-1",
    "lineItems": [
        {
            "id": "line-1",
            "productId": "prod-boots",
            "name": "Hiking Boots",
            "quantity": 2,
            "totalPrice": {"amount": 240.0, "currency": "USD"},
        },
        {
            "id": "line-2",
            "productId": "prod-socks",
            "name": "Wool Socks",
            "quantity": 1,
            "totalPrice": {"amount": 15.0, "currency": "USD"},
        },
    ],
    "totalPrice": {"amount": 255.0, "currency": "USD"},
}

SAMPLE_PRODUCTS: list[dict[str, Any]] = [
    {
        "id": "prod-boots",
        "sku": "BOOT-1",
        "name": "Hiking Boots",
        "slug": "hiking-boots",
        "price": {"value": {"amount": 120.0, "currency": "USD"}},
        "primaryImage": {"url": "https://cdn.example.com/boots.jpg"},
    },
    {
        "id": "prod-trail",
        "sku": "BOOT-2",
        "name": "Trail Boots",
        "slug": "trail-boots",
        "price": {"value": {"amount": 99.0, "currency": "USD"}},
        "primaryImage": None,
    },
]

BASE_CONFIG: dict[str, Any] = {
    "version": "1.0.0",
    "environment": "development",
    "globals": {
        "performance": {"timeoutMs": 5000, "retries": 0, "backoffMs": 0},
    },
    "actions": [
        {
            "id": "search",
            "name": "Search products",
            "description": "Search the catalog",
            "category": "search",
            "parameters": {
                "query": {"type": "string", "required": True, "max": 100},
                "limit": {"type": "integer", "default": 10, "min": 1, "max": 50},
            },
            "implementation": {"type": "function", "handler": "search_products"},
        },
        {
            "id": "getCart",
            "name": "Get cart",
            "description": "Show the cart",
            "category": "cart",
            "implementation": {"type": "function", "handler": "get_cart"},
        },
        {
            "id": "addToCart",
            "name": "Add to cart",
            "description": "Add a product to the cart",
            "category": "cart",
            "parameters": {
                "productId": {"type": "string", "required": True},
                "quantity": {"type": "integer", "default": 1, "min": 1},
            },
            "implementation": {"type": "function", "handler": "add_to_cart"},
            "dependencies": ["getCart"],
        },
        {
            "id": "placeOrder",
            "name": "Place order",
            "description": "Place the order",
            "category": "checkout",
            "parameters": {"costCenterId": {"type": "string"}},
            "implementation": {"type": "function", "handler": "place_order"},
            "modes": {"b2b": {"requiredFields": ["costCenterId"]}},
        },
        {
            "id": "buyNow",
            "name": "Buy now",
            "description": "Add to cart and place the order",
            "category": "checkout",
            "parameters": {"productId": {"type": "string", "required": True}},
            "implementation": {"type": "composed", "steps": ["addToCart", "placeOrder"]},
            "modes": {"b2b": {"enabled": False}},
        },
        {
            "id": "getBulkPricing",
            "name": "Bulk pricing",
            "description": "Tiered pricing for large orders",
            "category": "b2b",
            "parameters": {
                "productId": {"type": "string", "required": True},
                "quantities": {"type": "array", "required": True, "items": {"type": "integer"}},
            },
            "implementation": {"type": "function", "handler": "get_bulk_pricing"},
            "modes": {"b2c": {"enabled": False}},
        },
    ],
}


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config_dict() -> dict[str, Any]:
    """A fresh, mutable copy of the sample configuration."""
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def config(config_dict: dict[str, Any]) -> ConfigurationFile:
    return validate_configuration(config_dict)


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[..., Path]:
    """Write a configuration dict to ``tmp_path`` and return its path."""

    def _write(data: dict[str, Any], name: str = "actions.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def config_file(config_dict: dict[str, Any], write_config: Callable[..., Path]) -> Path:
    return write_config(config_dict)


# ---------------------------------------------------------------------------
# Commerce backend
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_commerce() -> AsyncMock:
    """AsyncMock standing in for the unified commerce API."""
    commerce = AsyncMock(spec=CommerceClient)
    commerce.with_auth.return_value = commerce
    commerce.get_cart.return_value = copy.deepcopy(SAMPLE_CART)
    commerce.search_products.return_value = {"products": copy.deepcopy(SAMPLE_PRODUCTS)}
    commerce.add_cart_line_item.return_value = copy.deepcopy(SAMPLE_CART)
    commerce.place_order.return_value = {"id": "order-1", "status": "created"}
    commerce.get_bulk_pricing.return_value = {
        "currency": "USD",
        "pricingTiers": [
            {"quantity": 100, "unitPrice": 108.0},
            {"quantity": 500, "unitPrice": 96.0},
        ],
    }
    return commerce


# ---------------------------------------------------------------------------
# Registries and context
# ---------------------------------------------------------------------------


@pytest.fixture
def context() -> AssistantContext:
    return AssistantContext(
        session_id=TEST_SESSION_ID,
        customer_id=TEST_CUSTOMER_ID,
        mode=AssistantMode.B2C,
    )


@pytest.fixture
def b2c_registry(config: ConfigurationFile, fake_commerce: AsyncMock) -> ActionRegistry:
    return ActionRegistry.build(config, AssistantMode.B2C, DEFAULT_HANDLERS, fake_commerce)


@pytest.fixture
def b2b_registry(config: ConfigurationFile, fake_commerce: AsyncMock) -> ActionRegistry:
    return ActionRegistry.build(config, AssistantMode.B2B, DEFAULT_HANDLERS, fake_commerce)


@pytest.fixture
def registry_manager(config: ConfigurationFile, fake_commerce: AsyncMock) -> RegistryManager:
    manager = RegistryManager(DEFAULT_HANDLERS, fake_commerce)
    manager.load(config)
    return manager


# ---------------------------------------------------------------------------
# HTTP clients
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(registry_manager: RegistryManager) -> AsyncGenerator[AsyncClient, None]:
    """Async test client with the registry manager overridden.

    ASGITransport does not run the lifespan, so no configuration is read
    from disk.
    """
    app.dependency_overrides[get_registry_manager] = lambda: registry_manager

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def plain_client() -> AsyncGenerator[AsyncClient, None]:
    """Minimal async test client with NO dependency overrides."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def sign_in() -> Callable[..., Caller]:
    """Treat subsequent requests as carrying a verified customer token.

    Overrides ``get_optional_caller``; the client fixtures clear it on teardown.
    """

    def _sign_in(**fields: Any) -> Caller:
        caller = Caller(**{"customer_id": TEST_CUSTOMER_ID, "token": TEST_TOKEN, **fields})
        app.dependency_overrides[get_optional_caller] = lambda: caller
        return caller

    return _sign_in
