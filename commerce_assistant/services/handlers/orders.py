"""Order history, tracking and reorder handlers."""

import logging
from typing import Any

import httpx

from commerce_assistant.integrations.commerce.client import CommerceBackend
from commerce_assistant.schemas.actions import AssistantMode
from commerce_assistant.schemas.context import AssistantContext
from commerce_assistant.services.handlers.cart import summarize_cart

logger = logging.getLogger(__name__)


def _amount(value: Any) -> float | None:
    return value.get("amount") if isinstance(value, dict) else None


def _summarize_order(order: dict[str, Any]) -> dict[str, Any]:
    shipping = order.get("shippingInfo") or {}
    return {
        "order_id": order.get("id"),
        "created_at": order.get("createdAt"),
        "status": (order.get("status") or "pending").lower(),
        "total": _amount(order.get("totalPrice")),
        "item_count": len(order.get("lineItems") or []),
        "tracking_number": shipping.get("trackingNumber"),
    }


async def get_orders(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    """List the customer's orders, newest page first, optionally by status."""
    status = params.get("status") or "all"
    limit = params.get("limit") or 10
    offset = params.get("offset") or 0
    response = await commerce.get_orders(page_size=limit, current_page=offset // limit + 1)

    orders = [_summarize_order(o) for o in response.get("results") or []]
    if status != "all":
        orders = [o for o in orders if o["status"] == status]

    if not orders:
        message = (
            f"No {status} orders found."
            if status != "all"
            else "You haven't placed any orders yet."
        )
        return {"orders": [], "total": 0, "message": message}

    pagination = response.get("pagination") or {}
    return {
        "orders": orders,
        "total": pagination.get("total", len(orders)),
        "message": f"Found {len(orders)} order(s).",
        "ui": {"component": "OrderList", "data": {"orders": orders}},
    }


async def get_order_details(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    order = await commerce.get_order_details(params["orderId"])
    summary = _summarize_order(order)
    shipping = order.get("shippingInfo") or {}
    summary.update(
        {
            "items": [
                {
                    "product_id": item.get("productId"),
                    "sku": item.get("sku"),
                    "name": item.get("name") or "Product",
                    "quantity": item.get("quantity", 0),
                    "price": _amount(item.get("totalPrice")),
                }
                for item in order.get("lineItems") or []
            ],
            "subtotal": _amount(order.get("subtotalPrice")),
            "shipping": _amount(order.get("shippingPrice")),
            "tax": _amount(order.get("totalTax")),
            "carrier": shipping.get("carrier"),
            "estimated_delivery": shipping.get("estimatedDelivery"),
        }
    )
    if context.mode == AssistantMode.B2B:
        summary["purchase_order_number"] = order.get("purchaseOrderNumber")
        summary["payment_terms"] = order.get("paymentTerms")

    return {
        **summary,
        "message": f"Order {summary['order_id']} is {summary['status']}.",
        "ui": {"component": "OrderDetails", "data": summary},
    }


async def track_order(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    order = await commerce.get_order_details(params["orderId"])
    order_id = order.get("id") or params["orderId"]
    status = (order.get("status") or "pending").lower()
    shipping = order.get("shippingInfo") or {}
    tracking_number = shipping.get("trackingNumber")

    if not tracking_number:
        return {
            "order_id": order_id,
            "status": status,
            "shipped": False,
            "message": f"Order {order_id} hasn't shipped yet. Current status: {status}.",
        }

    tracking = {
        "order_id": order_id,
        "status": status,
        "shipped": True,
        "tracking_number": tracking_number,
        "carrier": shipping.get("carrier"),
        "estimated_delivery": shipping.get("estimatedDelivery"),
    }
    message = f"Order {order_id} shipped with tracking number {tracking_number}."
    if tracking["estimated_delivery"]:
        message += f" Estimated delivery: {tracking['estimated_delivery']}."
    return {
        **tracking,
        "message": message,
        "ui": {"component": "OrderTracking", "data": tracking},
    }


async def reorder_items(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    """Add every line item of a past order back to the cart.

    Items the backend refuses are reported in ``failed`` and do not stop the
    rest of the order from being added.
    """
    order = await commerce.get_order_details(params["orderId"])
    order_id = order.get("id") or params["orderId"]
    line_items = order.get("lineItems") or []
    if not line_items:
        return {
            "order_id": order_id,
            "added": [],
            "failed": [],
            "message": f"Order {order_id} has no items to reorder.",
        }

    added: list[dict[str, Any]] = []
    failed: list[dict[str, Any]] = []
    for item in line_items:
        entry = {
            "product_id": item.get("productId"),
            "name": item.get("name") or "Product",
            "quantity": item.get("quantity") or 1,
        }
        try:
            await commerce.add_cart_line_item(
                entry["product_id"], entry["quantity"], sku=item.get("sku")
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Reorder of %s from order %s failed: %s", entry["product_id"], order_id, e
            )
            failed.append({**entry, "reason": "Could not be added to the cart"})
        else:
            added.append(entry)

    cart = summarize_cart(await commerce.get_cart())
    message = f"Added {len(added)} item(s) from order {order_id} to your cart."
    if failed:
        message += f" {len(failed)} item(s) could not be added."
    return {
        "order_id": order_id,
        "added": added,
        "failed": failed,
        "cart": cart,
        "message": message,
        "ui": {"component": "CartPreview", "data": cart},
    }
