"""Customer profile and address book handlers.

Sign-in, registration and password changes stay with the storefront's own
auth pages; these handlers only act for an already signed-in customer.
"""

from typing import Any

from commerce_assistant.core.exceptions import ValidationError
from commerce_assistant.core.logging_config import action_id_var
from commerce_assistant.integrations.commerce.client import CommerceBackend
from commerce_assistant.schemas.context import AssistantContext

PROFILE_FIELDS = ("firstName", "lastName", "email", "phone", "company")
ADDRESS_FIELDS = (
    "firstName",
    "lastName",
    "address1",
    "address2",
    "city",
    "state",
    "postalCode",
    "country",
    "phone",
    "isDefault",
)


def _summarize_customer(customer: dict[str, Any]) -> dict[str, Any]:
    return {
        "customer_id": customer.get("id"),
        "first_name": customer.get("firstName"),
        "last_name": customer.get("lastName"),
        "email": customer.get("email"),
        "phone": customer.get("phone"),
        "company": customer.get("company"),
        "account_type": "business" if customer.get("company") else "personal",
    }


def _summarize_address(address: dict[str, Any]) -> dict[str, Any]:
    return {
        "address_id": address.get("id"),
        "name": " ".join(p for p in (address.get("firstName"), address.get("lastName")) if p),
        "address1": address.get("address1"),
        "address2": address.get("address2"),
        "city": address.get("city"),
        "state": address.get("state"),
        "postal_code": address.get("postalCode"),
        "country": address.get("country"),
        "is_default": bool(address.get("isDefault")),
    }


def _require(operation: str, **values: Any) -> None:
    missing = [
        f"{name}: Field required for operation '{operation}'"
        for name, value in values.items()
        if not value
    ]
    if missing:
        raise ValidationError(action_id_var.get() or "manageAddresses", missing)


async def get_profile(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    response = await commerce.get_customer()
    customer = response.get("customer") or response
    addresses = (await commerce.get_customer_addresses())["addresses"]
    profile = {**_summarize_customer(customer), "address_count": len(addresses)}
    name = profile["first_name"] or "there"
    return {
        "profile": profile,
        "message": f"Here's your profile, {name}.",
        "ui": {"component": "CustomerProfile", "data": profile},
    }


async def update_profile(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    """Update only the profile fields the customer supplied."""
    fields = {name: params[name] for name in PROFILE_FIELDS if params.get(name) is not None}
    if not fields:
        return {"updated_fields": [], "message": "There was nothing to update."}

    response = await commerce.update_customer(fields)
    customer = response.get("customer") or response
    profile = _summarize_customer(customer)
    return {
        "profile": profile,
        "updated_fields": sorted(fields),
        "message": f"Updated your {', '.join(sorted(fields))}.",
    }


async def manage_addresses(
    params: dict[str, Any], context: AssistantContext, commerce: CommerceBackend
) -> dict[str, Any]:
    """List, add, update, delete or set the default saved address.

    ``operation`` selects the change. ``addressId`` is required for all but
    ``list`` and ``add``; ``address`` for ``add`` and ``update``.
    """
    operation = params["operation"]
    address_id = params.get("addressId")
    address = {
        k: v
        for k, v in (params.get("address") or {}).items()
        if k in ADDRESS_FIELDS and v is not None
    }

    match operation:
        case "list":
            addresses = [
                _summarize_address(a)
                for a in (await commerce.get_customer_addresses())["addresses"]
            ]
            message = (
                f"You have {len(addresses)} saved address(es)."
                if addresses
                else "You haven't saved any addresses yet."
            )
            return {
                "addresses": addresses,
                "message": message,
                "ui": {"component": "AddressList", "data": {"addresses": addresses}},
            }
        case "add":
            _require(operation, address=address)
            created = await commerce.create_customer_address(address)
            return {"address": _summarize_address(created), "message": "Address added."}
        case "update":
            _require(operation, addressId=address_id, address=address)
            updated = await commerce.update_customer_address(address_id, address)
            return {"address": _summarize_address(updated), "message": "Address updated."}
        case "delete":
            _require(operation, addressId=address_id)
            await commerce.delete_customer_address(address_id)
            return {"address_id": address_id, "message": "Address deleted."}
        case "setDefault":
            _require(operation, addressId=address_id)
            updated = await commerce.update_customer_address(address_id, {"isDefault": True})
            return {
                "address": _summarize_address(updated),
                "message": "Default address updated.",
            }
    raise ValidationError(
        action_id_var.get() or "manageAddresses",
        [f"operation: unsupported value '{operation}'"],
    )
