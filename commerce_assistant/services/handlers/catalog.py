"""Product search and detail handlers."""

from typing import Any

from commerce_assistant.integrations.commerce.client import CommerceBackend
from commerce_assistant.schemas.context import AssistantContext


def _summarize_product(product: dict[str, Any]) -> dict[str, Any]:
    price = (product.get("price") or {}).get("value") or {}
    image = product.get("primaryImage") or {}
    return {
        "id": product.get("id"),
        "sku": product.get("sku"),
        "name": product.get("name"),
        "slug": product.get("slug"),
        "price": price.get("amount"),
        "currency": price.get("currency"),
        "image_url": image.get("url"),
    }


async def search_products(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    """Search the catalog. Use when a customer is browsing or looking for products."""
    query = params["query"]
    limit = params.get("limit") or 10
    response = await commerce.search_products(query, page_size=limit, sort_by=params.get("sortBy"))

    products = [_summarize_product(p) for p in response.get("products") or []]
    if not products:
        return {
            "products": [],
            "total": 0,
            "message": f"I couldn't find any products matching '{query}'.",
        }

    return {
        "products": products,
        "total": len(products),
        "message": f"Found {len(products)} product(s) matching '{query}'.",
        "ui": {"component": "ProductGrid", "data": {"products": products}},
    }


async def get_product_details(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    response = await commerce.get_product_details(params["productId"])
    product = response.get("product") or {}
    summary = _summarize_product(product)
    summary["description"] = product.get("description")
    summary["category_hierarchy"] = [
        c.get("name") for c in response.get("categoryHierarchy") or [] if isinstance(c, dict)
    ]
    return {
        "product": summary,
        "message": f"Here's the product information for {summary['name'] or 'this product'}.",
        "ui": {"component": "ProductGrid", "data": {"products": [summary]}},
    }
