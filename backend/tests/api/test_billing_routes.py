"""Tests for the billing routes: subscription status, checkout, and portal."""

from unittest.mock import MagicMock, patch

import pytest
import stripe

from app.billing.query import PersistedSubscriptionQuery
from app.core.auth import AuthUser, require_auth
from app.core.config import Settings

pytestmark = pytest.mark.integration

CHECKOUT_URL = "https://checkout.stripe.test/cs_1"
PORTAL_URL = "https://billing.stripe.test/p_1"


def _route_settings(**overrides) -> Settings:
    values = {
        "_env_file": None,
        "debug": True,
        "frontend_url": "http://localhost:5173",
        "cors_allowed_origins": ["http://localhost:5173", "https://app.quoteflow.test"],
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def route_settings():
    settings = _route_settings()
    with patch("app.api.routes.billing.get_settings", return_value=settings):
        yield settings


class TestSubscriptionStatus:
    async def test_requires_auth(self, client):
        response = await client.get("/api/billing/subscription")

        assert response.status_code == 401
        assert "debug_id" in response.json()

    async def test_not_subscribed(self, client, authenticated, make_user):
        await make_user()

        response = await client.get("/api/billing/subscription")

        assert response.status_code == 200
        assert response.json() == {"subscribed": False, "plan": None, "period_end": None}

    async def test_query_errors_never_fail_the_request(self, client, authenticated, services):
        services.query = PersistedSubscriptionQuery(MagicMock(side_effect=RuntimeError("database unavailable")))

        response = await client.get("/api/billing/subscription")

        assert response.status_code == 200
        assert response.json()["subscribed"] is False


class TestCheckout:
    async def test_creates_session_for_new_customer(self, client, authenticated, gateway, route_settings):
        gateway.get_or_create_customer.return_value = "cus_new"
        gateway.create_checkout_session.return_value = CHECKOUT_URL

        response = await client.post(
            "/api/billing/checkout",
            json={"plan": "premium"},
            headers={"origin": "https://app.quoteflow.test"},
        )

        assert response.status_code == 200
        assert response.json() == {"url": CHECKOUT_URL}
        gateway.get_or_create_customer.assert_awaited_once_with("owner@acme.test", "user_123")

        args = gateway.create_checkout_session.await_args
        assert args.args == ("cus_new", "user_123")
        assert args.kwargs["success_url"] == "https://app.quoteflow.test/dashboard/settings/billing?success=true"
        assert args.kwargs["cancel_url"] == "https://app.quoteflow.test/dashboard/settings/billing?canceled=true"
        line_item = args.kwargs["line_item"]
        assert line_item["quantity"] == 1
        assert line_item["price_data"]["currency"] == "brl"
        assert line_item["price_data"]["unit_amount"] == 990
        assert line_item["price_data"]["recurring"] == {"interval": "month"}

    async def test_configured_price_is_used(self, client, authenticated, gateway):
        gateway.get_or_create_customer.return_value = "cus_1"
        gateway.create_checkout_session.return_value = CHECKOUT_URL

        with patch("app.api.routes.billing.get_settings", return_value=_route_settings(stripe_price_id="price_live")):
            response = await client.post("/api/billing/checkout")

        assert response.status_code == 200
        assert gateway.create_checkout_session.await_args.kwargs["line_item"] == {"price": "price_live", "quantity": 1}

    async def test_unknown_origin_falls_back_to_frontend(self, client, authenticated, gateway, route_settings):
        gateway.get_or_create_customer.return_value = "cus_1"
        gateway.create_checkout_session.return_value = CHECKOUT_URL

        await client.post("/api/billing/checkout", headers={"origin": "https://evil.test"})

        success_url = gateway.create_checkout_session.await_args.kwargs["success_url"]
        assert success_url.startswith("http://localhost:5173/")

    async def test_provider_error_is_502(self, client, authenticated, gateway, route_settings):
        gateway.get_or_create_customer.side_effect = stripe.APIConnectionError("network down")

        response = await client.post("/api/billing/checkout")

        assert response.status_code == 502
        assert response.json()["detail"] == "Payment provider error"

    async def test_unconfigured_gateway_is_503(self, client, authenticated, gateway):
        gateway.configured = False

        response = await client.post("/api/billing/checkout")

        assert response.status_code == 503
        gateway.get_or_create_customer.assert_not_awaited()

    async def test_email_is_required(self, client, app, gateway):
        async def _no_email():
            return AuthUser(user_id="user_123", email=None, claims={})

        app.dependency_overrides[require_auth] = _no_email

        response = await client.post("/api/billing/checkout")

        assert response.status_code == 400


class TestPortal:
    async def test_existing_customer(self, client, authenticated, gateway, route_settings):
        gateway.find_customer_by_email.return_value = "cus_123"
        gateway.create_portal_session.return_value = PORTAL_URL

        response = await client.post("/api/billing/portal")

        assert response.status_code == 200
        assert response.json() == {"url": PORTAL_URL}
        gateway.create_portal_session.assert_awaited_once_with(
            "cus_123", return_url="http://localhost:5173/dashboard/settings/billing"
        )

    async def test_no_customer_is_400(self, client, authenticated, gateway, route_settings):
        gateway.find_customer_by_email.return_value = None

        response = await client.post("/api/billing/portal")

        assert response.status_code == 400
        assert response.json()["detail"] == "No billing account found. Please subscribe first."
        gateway.create_portal_session.assert_not_awaited()

    async def test_provider_error_is_502(self, client, authenticated, gateway, route_settings):
        gateway.find_customer_by_email.return_value = "cus_123"
        gateway.create_portal_session.side_effect = stripe.InvalidRequestError("no config", param=None)

        response = await client.post("/api/billing/portal")

        assert response.status_code == 502
