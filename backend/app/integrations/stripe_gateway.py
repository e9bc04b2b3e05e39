"""Stripe integration: customers, subscriptions, prices, and hosted sessions.

This module provides the payment-provider client used by:
- the webhook verifier (signature checks over the raw body)
- the plan resolver (price and product lookup)
- the provider-backed subscription query
- checkout and customer-portal session creation
"""

import stripe
import structlog

logger = structlog.get_logger(__name__)


class StripeGateway:
    """Thin async wrapper over the Stripe SDK.

    The API key is passed with every call instead of being set on the
    ``stripe`` module, so several gateways (or a test double) can coexist.
    """

    def __init__(self, api_key: str):
        self._api_key = api_key

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    # ── Customers ───────────────────────────────────────────────────

    async def find_customer_by_email(self, email: str) -> str | None:
        """Return the id of the first Stripe customer with ``email``, if any."""
        customers = await stripe.Customer.list_async(email=email, limit=1, api_key=self._api_key)
        if not customers.data:
            return None
        return customers.data[0].id

    async def create_customer(self, email: str, user_id: str) -> str:
        customer = await stripe.Customer.create_async(
            email=email,
            metadata={"user_id": user_id},
            api_key=self._api_key,
        )
        logger.info("stripe_customer_created", customer_id=customer.id, user_id=user_id)
        return customer.id

    async def get_or_create_customer(self, email: str, user_id: str) -> str:
        customer_id = await self.find_customer_by_email(email)
        if customer_id:
            return customer_id
        return await self.create_customer(email, user_id)

    # ── Subscriptions and prices ────────────────────────────────────

    async def list_active_subscriptions(self, customer_id: str, limit: int = 1) -> list:
        subscriptions = await stripe.Subscription.list_async(
            customer=customer_id,
            status="active",
            limit=limit,
            api_key=self._api_key,
        )
        return list(subscriptions.data)

    async def retrieve_price(self, price_id: str):
        """Fetch a price with its product expanded."""
        return await stripe.Price.retrieve_async(price_id, expand=["product"], api_key=self._api_key)

    # ── Hosted sessions ─────────────────────────────────────────────

    async def create_checkout_session(
        self,
        customer_id: str,
        user_id: str,
        success_url: str,
        cancel_url: str,
        line_item: dict,
    ) -> str:
        """Create a subscription-mode Checkout session and return its URL.

        ``subscription_data.metadata.user_id`` lets the webhook reconciler attach
        the customer to the user when the subscription is first reported.
        """
        session = await stripe.checkout.Session.create_async(
            customer=customer_id,
            mode="subscription",
            line_items=[line_item],
            success_url=success_url,
            cancel_url=cancel_url,
            allow_promotion_codes=True,
            subscription_data={"metadata": {"user_id": user_id}},
            api_key=self._api_key,
        )
        if not session.url:
            raise stripe.InvalidRequestError("Checkout session has no URL", param=None)
        logger.info("checkout_session_created", session_id=session.id, customer_id=customer_id)
        return session.url

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        session = await stripe.billing_portal.Session.create_async(
            customer=customer_id,
            return_url=return_url,
            api_key=self._api_key,
        )
        return session.url

    # ── Webhooks ────────────────────────────────────────────────────

    @staticmethod
    def construct_event(payload: bytes, signature: str, secret: str):
        """Verify ``signature`` over the raw ``payload`` and build the event.

        Raises:
            stripe.SignatureVerificationError: signature or header is invalid
            ValueError: payload is not valid JSON
        """
        return stripe.Webhook.construct_event(payload, signature, secret)
