"""Coupon and order placement handlers."""

from typing import Any

from commerce_assistant.integrations.commerce.client import CommerceBackend
from commerce_assistant.schemas.actions import AssistantMode
from commerce_assistant.schemas.context import AssistantContext
from commerce_assistant.services.handlers.cart import summarize_cart


async def apply_coupon(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    code = params["code"]
    cart = await commerce.apply_coupon(code)
    summary = summarize_cart(cart)
    return {
        **summary,
        "coupon": code,
        "message": f"Coupon {code} applied. Your new total is {summary['total']}.",
    }


async def place_order(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    """Place an order for the current cart.

    In B2B mode the order is charged to ``costCenterId`` when given.
    """
    cost_center_id = params.get("costCenterId") if context.mode == AssistantMode.B2B else None
    order = await commerce.place_order(cost_center_id=cost_center_id)
    order_id = order.get("id")
    return {
        "order_id": order_id,
        "status": order.get("status"),
        "cost_center_id": cost_center_id,
        "message": f"Your order {order_id} has been placed.",
        "ui": {"component": "OrderConfirmation", "data": {"orderId": order_id}},
    }
