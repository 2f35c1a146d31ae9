"""Cart handlers.

Mutations re-read the cart so the returned snapshot reflects the backend's
state after the change.
"""

from typing import Any

from commerce_assistant.integrations.commerce.client import CommerceBackend
from commerce_assistant.schemas.context import AssistantContext


def summarize_cart(cart: dict[str, Any]) -> dict[str, Any]:
    """Flatten a unified cart into line items and a total."""
    items = []
    for item in cart.get("lineItems") or []:
        total_price = item.get("totalPrice") or {}
        items.append(
            {
                "line_item_id": item.get("id"),
                "product_id": item.get("productId") or item.get("id"),
                "name": item.get("name") or "Product",
                "quantity": item.get("quantity", 0),
                "price": total_price.get("amount"),
            }
        )
    total = (cart.get("totalPrice") or {}).get("amount", 0)
    return {"cart_id": cart.get("id"), "items": items, "item_count": len(items), "total": total}


def _cart_result(cart: dict[str, Any], message: str) -> dict[str, Any]:
    summary = summarize_cart(cart)
    return {
        **summary,
        "message": message.format(count=summary["item_count"], total=summary["total"]),
        "ui": {"component": "CartPreview", "data": summary},
    }


async def get_cart(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    cart = await commerce.get_cart()
    return _cart_result(cart, "Your cart has {count} item(s) with a total of {total}.")


async def add_to_cart(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    await commerce.add_cart_line_item(
        params["productId"], params.get("quantity") or 1, sku=params.get("sku")
    )
    cart = await commerce.get_cart()
    return _cart_result(
        cart, "Item added to cart. Your cart now has {count} item(s) with a total of {total}."
    )


async def update_cart(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    await commerce.update_cart_line_item(params["lineItemId"], params["quantity"])
    cart = await commerce.get_cart()
    return _cart_result(cart, "Cart updated. You now have {count} item(s) totalling {total}.")


async def remove_from_cart(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    await commerce.remove_cart_line_item(params["lineItemId"])
    cart = await commerce.get_cart()
    return _cart_result(cart, "Item removed. Your cart has {count} item(s) left.")
