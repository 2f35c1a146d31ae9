"""Side-by-side product comparison."""

import asyncio
from typing import Any

from commerce_assistant.integrations.commerce.client import CommerceBackend
from commerce_assistant.schemas.actions import AssistantMode
from commerce_assistant.schemas.context import AssistantContext

DEFAULT_ATTRIBUTES = ("price", "ratings", "availability", "specifications")


def _attribute_value(product: dict[str, Any], attribute: str) -> Any:
    match attribute:
        case "price":
            price = product.get("price") or {}
            value = price.get("value") or {}
            special = price.get("special") or {}
            return {
                "amount": value.get("amount"),
                "special": special.get("amount"),
                "currency": value.get("currency"),
            }
        case "ratings":
            rating = product.get("rating") or {}
            return {"average": rating.get("average"), "count": rating.get("count") or 0}
        case "availability":
            inventory = product.get("inventory") or {}
            return "in_stock" if inventory.get("isInStock", True) else "out_of_stock"
        case "specifications":
            return {
                a.get("label") or a.get("name"): a.get("valueLabel") or a.get("value")
                for a in product.get("attributes") or []
                if isinstance(a, dict)
            }
    return product.get(attribute)


def _effective_price(product: dict[str, Any]) -> float | None:
    price = _attribute_value(product, "price")
    return price["special"] if price["special"] is not None else price["amount"]


async def compare_products(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    """Compare two to five products on the requested attributes.

    Details are fetched concurrently. The matrix is keyed by attribute, then
    product id.
    """
    product_ids = list(dict.fromkeys(params["productIds"]))
    attributes = list(params.get("attributes") or DEFAULT_ATTRIBUTES)
    responses = await asyncio.gather(*(commerce.get_product_details(pid) for pid in product_ids))
    products = [
        {"id": pid, **(response.get("product") or {})}
        for pid, response in zip(product_ids, responses, strict=True)
    ]

    matrix = {
        attribute: {p["id"]: _attribute_value(p, attribute) for p in products}
        for attribute in attributes
    }

    differences: list[str] = []
    recommendation: str | None = None
    priced = [(p, _effective_price(p)) for p in products]
    priced = [(p, amount) for p, amount in priced if amount is not None]
    if len(priced) >= 2:
        cheapest, low = min(priced, key=lambda pair: pair[1])
        _, high = max(priced, key=lambda pair: pair[1])
        if high > low:
            differences.append(f"Prices range from {low} to {high}.")
        recommendation = f"{cheapest.get('name') or cheapest['id']} is the best value."
    rated = [p for p in products if (p.get("rating") or {}).get("average") is not None]
    if rated:
        best = max(rated, key=lambda p: p["rating"]["average"])
        differences.append(
            f"{best.get('name') or best['id']} has the highest rating "
            f"({best['rating']['average']})."
        )
    if context.mode == AssistantMode.B2B:
        differences.append("Bulk pricing may change the comparison for large orders.")

    names = [p.get("name") or p["id"] for p in products]
    return {
        "product_ids": product_ids,
        "attributes": attributes,
        "matrix": matrix,
        "differences": differences,
        "recommendation": recommendation,
        "message": f"Compared {', '.join(names)}.",
        "ui": {
            "component": "ComparisonTable",
            "data": {"products": names, "matrix": matrix},
        },
    }
