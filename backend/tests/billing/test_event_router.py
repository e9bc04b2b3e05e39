"""Tests for EventKind mapping and the static dispatch table."""

from unittest.mock import AsyncMock

import pytest

from app.billing.dispatcher import DispatchResult, EventRouter, HandlerOutcome
from app.billing.events import EventKind, WebhookEvent
from app.core.exceptions import HandlerFailed, UnknownCustomer

pytestmark = pytest.mark.unit


def _event(event_type: str, obj: dict | None = None) -> WebhookEvent:
    return WebhookEvent(id="evt_1", type=event_type, object=obj or {"id": "obj_1"})


class TestEventKind:
    @pytest.mark.parametrize(
        "event_type, kind",
        [
            ("customer.subscription.created", EventKind.SUBSCRIPTION_CREATED),
            ("customer.subscription.updated", EventKind.SUBSCRIPTION_UPDATED),
            ("customer.subscription.deleted", EventKind.SUBSCRIPTION_DELETED),
            ("invoice.paid", EventKind.INVOICE_PAID),
            ("invoice.payment_failed", EventKind.INVOICE_PAYMENT_FAILED),
        ],
    )
    def test_supported_types(self, event_type, kind):
        assert EventKind.from_type(event_type) is kind

    @pytest.mark.parametrize("event_type", ["charge.succeeded", "invoice.created", "", "INVOICE.PAID"])
    def test_everything_else_is_unhandled(self, event_type):
        assert EventKind.from_type(event_type) is EventKind.UNHANDLED

    def test_customer_id_from_expanded_customer(self):
        event = _event("invoice.paid", {"id": "in_1", "customer": {"id": "cus_9", "object": "customer"}})
        assert event.customer_id == "cus_9"

    def test_customer_id_missing(self):
        assert _event("invoice.paid").customer_id is None


class TestEventRouter:
    async def test_routes_to_registered_handler(self):
        handler = AsyncMock(return_value=HandlerOutcome(action="invoice_paid", entity_id="in_1"))
        router = EventRouter({EventKind.INVOICE_PAID: handler})
        event = _event("invoice.paid")

        result = await router.dispatch(event)

        handler.assert_awaited_once_with(event)
        assert result == DispatchResult(event_type="invoice.paid", handled=True)

    async def test_unknown_type_is_acknowledged_without_handlers(self):
        handler = AsyncMock()
        router = EventRouter({EventKind.INVOICE_PAID: handler})

        result = await router.dispatch(_event("charge.refunded"))

        handler.assert_not_awaited()
        assert result.handled is False
        assert result.event_type == "charge.refunded"

    async def test_supported_kind_without_handler_is_not_handled(self):
        router = EventRouter({})

        result = await router.dispatch(_event("invoice.paid"))

        assert result.handled is False

    async def test_handler_error_is_wrapped(self):
        cause = UnknownCustomer("cus_missing")
        router = EventRouter({EventKind.INVOICE_PAID: AsyncMock(side_effect=cause)})

        with pytest.raises(HandlerFailed) as exc_info:
            await router.dispatch(_event("invoice.paid"))

        assert exc_info.value.event_type == "invoice.paid"
        assert exc_info.value.cause is cause
        assert exc_info.value.__cause__ is cause

    async def test_duplicate_outcome_is_reported(self):
        handler = AsyncMock(return_value=HandlerOutcome(action="duplicate", duplicate=True))
        router = EventRouter({EventKind.INVOICE_PAID: handler})

        result = await router.dispatch(_event("invoice.paid"))

        assert result.handled is True
        assert result.duplicate is True

    def test_unhandled_cannot_be_registered(self):
        with pytest.raises(ValueError):
            EventRouter({EventKind.UNHANDLED: AsyncMock()})

    def test_kinds_lists_registered_handlers(self):
        router = EventRouter({EventKind.INVOICE_PAID: AsyncMock(), EventKind.SUBSCRIPTION_DELETED: AsyncMock()})
        assert router.kinds == {EventKind.INVOICE_PAID, EventKind.SUBSCRIPTION_DELETED}
