"""Built-in action handlers, keyed by the name configurations refer to."""

from collections.abc import Mapping

from commerce_assistant.services.action_registry import ActionHandler
from commerce_assistant.services.handlers.b2b import check_bulk_availability, get_bulk_pricing
from commerce_assistant.services.handlers.cart import (
    add_to_cart,
    get_cart,
    remove_from_cart,
    update_cart,
)
from commerce_assistant.services.handlers.catalog import get_product_details, search_products
from commerce_assistant.services.handlers.checkout import apply_coupon, place_order
from commerce_assistant.services.handlers.comparison import compare_products
from commerce_assistant.services.handlers.customer import (
    get_profile,
    manage_addresses,
    update_profile,
)
from commerce_assistant.services.handlers.orders import (
    get_order_details,
    get_orders,
    reorder_items,
    track_order,
)

DEFAULT_HANDLERS: Mapping[str, ActionHandler] = {
    "search_products": search_products,
    "get_product_details": get_product_details,
    "compare_products": compare_products,
    "get_cart": get_cart,
    "add_to_cart": add_to_cart,
    "update_cart": update_cart,
    "remove_from_cart": remove_from_cart,
    "apply_coupon": apply_coupon,
    "place_order": place_order,
    "get_orders": get_orders,
    "get_order_details": get_order_details,
    "track_order": track_order,
    "reorder_items": reorder_items,
    "get_profile": get_profile,
    "update_profile": update_profile,
    "manage_addresses": manage_addresses,
    "get_bulk_pricing": get_bulk_pricing,
    "check_bulk_availability": check_bulk_availability,
}

__all__ = ["DEFAULT_HANDLERS"]
