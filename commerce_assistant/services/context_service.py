"""Conversation context assembly and preference persistence."""

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import pydantic

from commerce_assistant.core.config import settings
from commerce_assistant.integrations.commerce.client import CommerceBackend
from commerce_assistant.schemas.actions import AssistantMode
from commerce_assistant.schemas.context import (
    AssistantContext,
    AssistantMessage,
    AssistantPreferences,
    CartItemSnapshot,
    LastAction,
)

logger = logging.getLogger(__name__)


def snapshot_cart(cart: dict[str, Any]) -> tuple[CartItemSnapshot, ...]:
    """Reduce a unified cart to the line items the assistant reasons about."""
    items = []
    for line in cart.get("lineItems") or []:
        product_id = line.get("productId") or line.get("id")
        if not product_id:
            continue
        items.append(
            CartItemSnapshot(
                product_id=str(product_id),
                quantity=int(line.get("quantity") or 0),
                line_item_id=line.get("id"),
            )
        )
    return tuple(items)


class ContextAssembler:
    """Builds the immutable context passed into action execution each turn.

    Reading backend state is best effort: if the cart cannot be fetched the
    turn proceeds with an empty cart.
    """

    def __init__(
        self,
        commerce: CommerceBackend,
        *,
        max_history: int | None = None,
        preferences: AssistantPreferences | None = None,
    ) -> None:
        self.commerce = commerce
        self.max_history = (
            max_history if max_history is not None else settings.max_conversation_history
        )
        self.preferences = preferences or AssistantPreferences()

    async def build(
        self,
        *,
        history: Iterable[AssistantMessage] = (),
        mode: AssistantMode | None = None,
        session_id: str | None = None,
        customer_id: str | None = None,
        permissions: Iterable[str] = (),
        current_page: str | None = None,
        last_action: LastAction | None = None,
        locale: str | None = None,
        currency: str | None = None,
        auth_token: str | None = None,
    ) -> AssistantContext:
        try:
            cart = await self.commerce.get_cart()
            cart_items = snapshot_cart(cart)
        except Exception as e:
            logger.warning("Cart snapshot unavailable, using empty cart: %s", e)
            cart_items = ()

        messages = tuple(history)[-self.max_history :] if self.max_history > 0 else ()

        return AssistantContext(
            cart_items=cart_items,
            current_page=current_page,
            last_action=last_action,
            message_history=messages,
            mode=mode or self.preferences.mode,
            session_id=session_id,
            customer_id=customer_id,
            permissions=frozenset(permissions),
            locale=locale or self.preferences.locale,
            currency=currency or self.preferences.currency,
            auth_token=auth_token,
        )


# === Preferences ===


def load_preferences(path: str | Path) -> AssistantPreferences:
    """Read saved preferences, falling back to defaults if none are usable."""
    path = Path(path)
    try:
        return AssistantPreferences.model_validate_json(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return AssistantPreferences()
    except (OSError, pydantic.ValidationError) as e:
        logger.warning("Ignoring unreadable preferences at %s: %s", path, e)
        return AssistantPreferences()


def save_preferences(path: str | Path, preferences: AssistantPreferences) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(preferences.model_dump(mode="json"), indent=2) + "\n", encoding="utf-8"
    )
