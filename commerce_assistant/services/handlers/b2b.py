"""B2B handlers backed by the middleware's custom extension methods."""

from typing import Any

from commerce_assistant.integrations.commerce.client import CommerceBackend
from commerce_assistant.schemas.context import AssistantContext


async def get_bulk_pricing(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    product_id = params["productId"]
    response = await commerce.get_bulk_pricing(product_id, list(params["quantities"]))
    tiers = response.get("pricingTiers") or []
    return {
        "product_id": product_id,
        "currency": response.get("currency"),
        "tiers": tiers,
        "message": f"Found {len(tiers)} pricing tier(s) for {product_id}.",
        "ui": {"component": "BulkPricingTable", "data": {"tiers": tiers}},
    }


async def check_bulk_availability(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    product_id = params["productId"]
    quantity = params["quantity"]
    response = await commerce.check_bulk_availability(product_id, quantity)
    available = bool(response.get("available"))
    if available:
        message = f"{quantity} unit(s) of {product_id} are available."
    else:
        in_stock = response.get("availableQuantity", 0)
        message = f"Only {in_stock} unit(s) of {product_id} are available."
    return {
        "product_id": product_id,
        "requested_quantity": quantity,
        "available": available,
        "available_quantity": response.get("availableQuantity"),
        "lead_time": response.get("leadTime"),
        "message": message,
    }
