"""Field access for Stripe subscription and invoice payloads.

Stripe moved several fields between API versions (period end onto
subscription items, the invoice's subscription under ``parent``); these
helpers accept either shape.
"""

from datetime import UTC, datetime


def _id_of(value) -> str | None:
    """Return the id of an expandable field (string id or expanded object)."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _first_item(subscription: dict) -> dict:
    items = subscription.get("items") or {}
    data = items.get("data") or []
    return data[0] if data else {}


def first_price(subscription: dict) -> dict | None:
    """The price of the subscription's first item, falling back to the legacy ``plan``."""
    price = _first_item(subscription).get("price")
    if price is None:
        price = subscription.get("plan")
    if isinstance(price, str):
        return {"id": price}
    return price


def period_end(subscription: dict) -> datetime | None:
    timestamp = subscription.get("current_period_end")
    if timestamp is None:
        timestamp = _first_item(subscription).get("current_period_end")
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=UTC)


def _invoice_subscription_details(invoice: dict) -> dict:
    parent = invoice.get("parent") or {}
    return parent.get("subscription_details") or invoice.get("subscription_details") or {}


def invoice_subscription_id(invoice: dict) -> str | None:
    subscription_id = _id_of(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    return _id_of(_invoice_subscription_details(invoice).get("subscription"))


def metadata_user_id(obj: dict) -> str | None:
    """User id stamped by checkout (``subscription_data.metadata.user_id``)."""
    metadata = obj.get("metadata") or {}
    if metadata.get("user_id"):
        return metadata["user_id"]
    if obj.get("object") == "invoice":
        details_metadata = _invoice_subscription_details(obj).get("metadata") or {}
        return details_metadata.get("user_id")
    return None
