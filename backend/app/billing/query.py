"""Subscription Query Service: "is this user subscribed, and to what plan?"

Two readers share one contract. Both fail soft: any error yields
``SubscriptionStatus(subscribed=False)`` because the answer only gates UI
features and must never block a page render.
"""

from typing import Protocol, runtime_checkable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.billing.objects import period_end
from app.billing.plans import PlanResolver
from app.core.auth import AuthUser
from app.db.models.subscription import Subscription, SubscriptionStatus as Status
from app.integrations.stripe_gateway import StripeGateway
from app.schemas.billing import SubscriptionStatus

logger = structlog.get_logger(__name__)

# Statuses that grant access. past_due is opt-in via entitled_statuses().
ENTITLED_STATUSES = frozenset({Status.ACTIVE, "trialing"})


def entitled_statuses(past_due_is_subscribed: bool = False) -> frozenset[str]:
    """Statuses counted as subscribed.

    ``past_due`` means Stripe is still retrying a failed renewal; whether that
    keeps premium features on is a business decision, off by default.
    """
    if past_due_is_subscribed:
        return ENTITLED_STATUSES | {Status.PAST_DUE}
    return ENTITLED_STATUSES


@runtime_checkable
class SubscriptionQuery(Protocol):
    async def get_status(self, user: AuthUser) -> SubscriptionStatus:
        ...


class ProviderSubscriptionQuery:
    """Asks Stripe directly: customer by email, then its first active subscription."""

    def __init__(self, gateway: StripeGateway, plan_resolver: PlanResolver):
        self._gateway = gateway
        self._plans = plan_resolver

    async def get_status(self, user: AuthUser) -> SubscriptionStatus:
        try:
            if not user.email:
                logger.info("subscription_query_no_email", user_id=user.user_id)
                return SubscriptionStatus(subscribed=False)

            customer_id = await self._gateway.find_customer_by_email(user.email)
            if customer_id is None:
                return SubscriptionStatus(subscribed=False)

            subscriptions = await self._gateway.list_active_subscriptions(customer_id, limit=1)
            if not subscriptions:
                return SubscriptionStatus(subscribed=False)

            subscription = subscriptions[0]
            return SubscriptionStatus(
                subscribed=True,
                plan=await self._plans.plan_for_subscription(subscription),
                period_end=period_end(subscription),
            )
        except Exception as exc:
            logger.warning(
                "subscription_query_failed",
                source="provider",
                user_id=user.user_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return SubscriptionStatus(subscribed=False)


class PersistedSubscriptionQuery:
    """Reads the subscription rows the webhook reconciler maintains."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        past_due_is_subscribed: bool = False,
    ):
        self._session_factory = session_factory
        self._entitled = entitled_statuses(past_due_is_subscribed)

    async def get_status(self, user: AuthUser) -> SubscriptionStatus:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Subscription)
                    .where(Subscription.user_id == user.user_id)
                    .order_by(Subscription.updated_at.desc(), Subscription.id.desc())
                )
                subscriptions = result.scalars().all()
        except Exception as exc:
            logger.warning(
                "subscription_query_failed",
                source="persisted",
                user_id=user.user_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return SubscriptionStatus(subscribed=False)

        for subscription in subscriptions:
            if subscription.status in self._entitled:
                return SubscriptionStatus(
                    subscribed=True,
                    plan=subscription.plan,
                    period_end=subscription.current_period_end,
                )
        return SubscriptionStatus(subscribed=False)
