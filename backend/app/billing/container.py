"""Billing dependency container, built once per process."""

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.billing.dispatcher import EventRouter
from app.billing.plans import PlanResolver
from app.billing.query import PersistedSubscriptionQuery, ProviderSubscriptionQuery, SubscriptionQuery
from app.billing.reconciler import SubscriptionReconciler
from app.billing.verifier import WebhookVerifier
from app.core.config import Settings
from app.integrations.stripe_gateway import StripeGateway
from app.metrics.cloudwatch import BusinessMetrics


@dataclass
class BillingServices:
    """Everything the billing routes need, passed explicitly instead of module globals."""

    session_factory: async_sessionmaker[AsyncSession]
    gateway: StripeGateway
    verifier: WebhookVerifier
    router: EventRouter
    reconciler: SubscriptionReconciler
    query: SubscriptionQuery
    engine: AsyncEngine | None = None


def build_billing_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    engine: AsyncEngine | None = None,
    gateway: StripeGateway | None = None,
) -> BillingServices:
    gateway = gateway or StripeGateway(settings.stripe_secret_key)
    plans = PlanResolver(gateway, settings.stripe_plan_names, settings.default_plan_name)
    metrics = BusinessMetrics(
        namespace=settings.metrics_namespace,
        region_name=settings.aws_region,
        enabled=settings.metrics_enabled,
    )

    reconciler = SubscriptionReconciler(
        session_factory,
        plans,
        metrics=metrics,
        dedupe_events=settings.stripe_webhook_dedupe,
    )

    if settings.subscription_query_source == "provider":
        query: SubscriptionQuery = ProviderSubscriptionQuery(gateway, plans)
    else:
        query = PersistedSubscriptionQuery(session_factory, settings.billing_past_due_is_subscribed)

    return BillingServices(
        session_factory=session_factory,
        gateway=gateway,
        # Unsigned webhooks are a local-testing mode only
        verifier=WebhookVerifier(
            settings.stripe_webhook_secret,
            allow_unsigned=settings.stripe_webhook_allow_unsigned and settings.debug,
        ),
        router=EventRouter(reconciler.handlers()),
        reconciler=reconciler,
        query=query,
        engine=engine,
    )


def get_billing_services(request: Request) -> BillingServices:
    """FastAPI dependency returning the process-wide container."""
    return request.app.state.billing
