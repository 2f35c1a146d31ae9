"""Pydantic schemas for the per-turn assistant context."""

from datetime import datetime
from typing import Any, Literal

from pydantic import ConfigDict, Field

from commerce_assistant.schemas.actions import AssistantMode
from commerce_assistant.schemas.common import BaseSchema


class FrozenSchema(BaseSchema):
    """Immutable variant of BaseSchema."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        frozen=True,
    )


class CartItemSnapshot(FrozenSchema):
    product_id: str
    quantity: int
    line_item_id: str | None = None


class LastAction(FrozenSchema):
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


class AssistantMessage(FrozenSchema):
    role: Literal["user", "assistant", "system"]
    content: str
    created_at: datetime | None = None


class Caller(FrozenSchema):
    """Identity established from a verified bearer token."""

    customer_id: str
    role: str = "customer"  # customer, business or admin
    permissions: frozenset[str] = frozenset()
    token: str | None = Field(default=None, exclude=True, repr=False)


class AssistantContext(FrozenSchema):
    """Snapshot of commerce state for one user turn.

    Handlers read it and return new data; they never edit it. Use
    ``model_copy(update=...)`` to derive the next turn's context.
    """

    cart_items: tuple[CartItemSnapshot, ...] = ()
    current_page: str | None = None
    last_action: LastAction | None = None
    message_history: tuple[AssistantMessage, ...] = ()

    mode: AssistantMode = AssistantMode.B2C
    session_id: str | None = None
    customer_id: str | None = None
    permissions: frozenset[str] = frozenset()
    locale: str | None = None
    currency: str | None = None
    auth_token: str | None = Field(default=None, exclude=True, repr=False)

    @property
    def caller_key(self) -> str:
        """Identity used for per-caller rate limits."""
        return self.customer_id or self.session_id or "anonymous"


class AssistantPreferences(FrozenSchema):
    """User preferences persisted across sessions."""

    mode: AssistantMode = AssistantMode.B2C
    locale: str = "en"
    currency: str = "USD"
