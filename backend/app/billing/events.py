"""Webhook event model and the supported event kinds."""

from dataclasses import dataclass, field
from enum import Enum


class EventKind(str, Enum):
    """Stripe event types this service reconciles.

    Type strings outside this set map to ``UNHANDLED``.
    """

    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    UNHANDLED = "unhandled"

    @classmethod
    def from_type(cls, event_type: str) -> "EventKind":
        try:
            return cls(event_type)
        except ValueError:
            return cls.UNHANDLED


@dataclass(frozen=True)
class WebhookEvent:
    """A trusted Stripe event: ``{id, type, data: {object}}``.

    ``verified`` is False only for bodies accepted in unsigned debug mode.
    """

    id: str
    type: str
    object: dict = field(repr=False)
    verified: bool = True

    @property
    def kind(self) -> EventKind:
        return EventKind.from_type(self.type)

    @property
    def object_id(self) -> str | None:
        return self.object.get("id")

    @property
    def customer_id(self) -> str | None:
        customer = self.object.get("customer")
        # Expanded customers arrive as objects
        if isinstance(customer, dict):
            return customer.get("id")
        return customer
