"""Unified commerce API client using httpx.

The storefront middleware exposes every unified data model method as
``POST {base_url}/unified/{method}`` with a single JSON argument, and B2B
custom extension methods under ``/custom/{method}``.
"""

import logging
from typing import Any, Protocol

import httpx

from commerce_assistant.core.config import settings

logger = logging.getLogger(__name__)


class CommerceBackend(Protocol):
    """Async operations the action handlers depend on."""

    async def get_cart(self) -> dict[str, Any]: ...

    async def add_cart_line_item(
        self, product_id: str, quantity: int, sku: str | None = None
    ) -> dict[str, Any]: ...

    async def update_cart_line_item(self, line_item_id: str, quantity: int) -> dict[str, Any]: ...

    async def remove_cart_line_item(self, line_item_id: str) -> dict[str, Any]: ...

    async def search_products(
        self, search: str, page_size: int = 10, sort_by: str | None = None
    ) -> dict[str, Any]: ...

    async def get_product_details(self, product_id: str) -> dict[str, Any]: ...

    async def apply_coupon(self, code: str) -> dict[str, Any]: ...

    async def place_order(self, cost_center_id: str | None = None) -> dict[str, Any]: ...

    async def get_bulk_pricing(
        self, product_id: str, quantities: list[int]
    ) -> dict[str, Any]: ...

    async def check_bulk_availability(
        self, product_id: str, quantity: int
    ) -> dict[str, Any]: ...

    async def get_orders(self, page_size: int = 10, current_page: int = 1) -> dict[str, Any]: ...

    async def get_order_details(self, order_id: str) -> dict[str, Any]: ...

    async def get_customer(self) -> dict[str, Any]: ...

    async def update_customer(self, fields: dict[str, Any]) -> dict[str, Any]: ...

    async def get_customer_addresses(self) -> dict[str, Any]: ...

    async def create_customer_address(self, address: dict[str, Any]) -> dict[str, Any]: ...

    async def update_customer_address(
        self, address_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]: ...

    async def delete_customer_address(self, address_id: str) -> dict[str, Any]: ...


class CommerceClient:
    """Async client for the unified commerce middleware."""

    def __init__(
        self,
        base_url: str | None = None,
        auth_token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.commerce_api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.commerce_api_timeout
        self.headers = {"Content-Type": "application/json"}
        if auth_token:
            self.headers["Authorization"] = f"Bearer {auth_token}"
        self._transport = transport

    def with_auth(self, auth_token: str | None) -> "CommerceClient":
        """Return a client for the same backend acting as another customer."""
        return CommerceClient(self.base_url, auth_token, self.timeout, self._transport)

    async def _call(self, namespace: str, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(
            headers=self.headers, timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.post(f"{self.base_url}/{namespace}/{method}", json=[payload])
            response.raise_for_status()
            if not response.content:
                return {}
            data = response.json()
            # List-returning methods (addresses) are wrapped for a uniform shape
            if isinstance(data, list):
                return {"results": data}
            result: dict[str, Any] = data
            return result

    async def _unified(self, method: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self._call("unified", method, payload or {})

    async def _custom(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._call("custom", method, payload)

    # --- Cart ---

    async def get_cart(self) -> dict[str, Any]:
        return await self._unified("getCart")

    async def add_cart_line_item(
        self, product_id: str, quantity: int, sku: str | None = None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"productId": product_id, "quantity": quantity}
        if sku:
            payload["sku"] = sku
        return await self._unified("addCartLineItem", payload)

    async def update_cart_line_item(self, line_item_id: str, quantity: int) -> dict[str, Any]:
        return await self._unified(
            "updateCartLineItem", {"lineItemId": line_item_id, "quantity": quantity}
        )

    async def remove_cart_line_item(self, line_item_id: str) -> dict[str, Any]:
        return await self._unified("removeCartLineItem", {"lineItemId": line_item_id})

    # --- Products ---

    async def search_products(
        self, search: str, page_size: int = 10, sort_by: str | None = None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"search": search, "pageSize": page_size}
        if sort_by:
            payload["sortBy"] = sort_by
        return await self._unified("searchProducts", payload)

    async def get_product_details(self, product_id: str) -> dict[str, Any]:
        return await self._unified("getProductDetails", {"id": product_id})

    # --- Checkout ---

    async def apply_coupon(self, code: str) -> dict[str, Any]:
        return await self._unified("applyCouponToCart", {"couponCode": code})

    async def place_order(self, cost_center_id: str | None = None) -> dict[str, Any]:
        if cost_center_id:
            await self._custom("replaceOrgCartCostCenter", {"costCenterId": cost_center_id})
            logger.info("Assigned cost center %s before placing order", cost_center_id)
        return await self._unified("placeOrder")

    # --- B2B ---

    async def get_bulk_pricing(self, product_id: str, quantities: list[int]) -> dict[str, Any]:
        return await self._custom(
            "getBulkPricing", {"productId": product_id, "quantities": quantities}
        )

    async def check_bulk_availability(self, product_id: str, quantity: int) -> dict[str, Any]:
        return await self._custom(
            "checkBulkAvailability", {"productId": product_id, "quantity": quantity}
        )

    # --- Orders ---

    async def get_orders(self, page_size: int = 10, current_page: int = 1) -> dict[str, Any]:
        return await self._unified(
            "getOrders", {"pageSize": page_size, "currentPage": current_page}
        )

    async def get_order_details(self, order_id: str) -> dict[str, Any]:
        return await self._unified("getOrderDetails", {"orderId": order_id})

    # --- Customer ---

    async def get_customer(self) -> dict[str, Any]:
        return await self._unified("getCustomer")

    async def update_customer(self, fields: dict[str, Any]) -> dict[str, Any]:
        return await self._unified("updateCustomer", fields)

    async def get_customer_addresses(self) -> dict[str, Any]:
        """Return ``{"addresses": [...]}`` whether the backend sends a list or a mapping."""
        response = await self._unified("getCustomerAddresses")
        addresses = response.get("addresses", response.get("results", []))
        return {"addresses": addresses}

    async def create_customer_address(self, address: dict[str, Any]) -> dict[str, Any]:
        return await self._unified("createCustomerAddress", address)

    async def update_customer_address(
        self, address_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._unified("updateCustomerAddress", {"addressId": address_id, **fields})

    async def delete_customer_address(self, address_id: str) -> dict[str, Any]:
        return await self._unified("deleteCustomerAddress", {"addressId": address_id})
