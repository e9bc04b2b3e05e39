"""Subscription state reconciler: Stripe events -> local subscription rows.

Each handled event runs in one transaction that resolves the owning user,
applies at most one subscription upsert/update, and appends exactly one
``activity_log`` row. Any failure rolls the whole event back and propagates,
so the webhook answers non-2xx and Stripe redelivers.

There is no ordering token: two different events for the same subscription
delivered out of order are applied last-write-wins.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.billing.dispatcher import Handler, HandlerOutcome
from app.billing.events import EventKind, WebhookEvent
from app.billing.objects import invoice_subscription_id, metadata_user_id, period_end
from app.billing.plans import PlanResolver
from app.core.exceptions import UnknownCustomer
from app.db.base import dialect_insert
from app.db.models.activity_log import ActivityLog
from app.db.models.stripe_event import StripeWebhookEvent
from app.db.models.subscription import Subscription, SubscriptionStatus
from app.db.models.user import User
from app.metrics.cloudwatch import BusinessMetrics

logger = structlog.get_logger(__name__)

# Audit action -> business metric name
METRIC_EVENTS: dict[str, str] = {
    "subscription_created": "subscription_created",
    "subscription_updated": "subscription_updated",
    "subscription_deleted": "subscription_canceled",
    "invoice_paid": "invoice_paid",
    "invoice_payment_failed": "payment_failed",
}

Apply = Callable[[AsyncSession, WebhookEvent], Awaitable[HandlerOutcome]]


class SubscriptionReconciler:
    """Applies the five subscription lifecycle events to persisted state."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        plan_resolver: PlanResolver,
        metrics: BusinessMetrics | None = None,
        dedupe_events: bool = False,
    ):
        self._session_factory = session_factory
        self._plans = plan_resolver
        self._metrics = metrics
        self._dedupe_events = dedupe_events

    def handlers(self) -> dict[EventKind, Handler]:
        return {
            EventKind.SUBSCRIPTION_CREATED: self.subscription_created,
            EventKind.SUBSCRIPTION_UPDATED: self.subscription_updated,
            EventKind.SUBSCRIPTION_DELETED: self.subscription_deleted,
            EventKind.INVOICE_PAID: self.invoice_paid,
            EventKind.INVOICE_PAYMENT_FAILED: self.invoice_payment_failed,
        }

    # ── Handlers ────────────────────────────────────────────────────

    async def subscription_created(self, event: WebhookEvent) -> HandlerOutcome:
        return await self._apply(event, self._on_subscription_created)

    async def subscription_updated(self, event: WebhookEvent) -> HandlerOutcome:
        return await self._apply(event, self._on_subscription_updated)

    async def subscription_deleted(self, event: WebhookEvent) -> HandlerOutcome:
        return await self._apply(event, self._on_subscription_deleted)

    async def invoice_paid(self, event: WebhookEvent) -> HandlerOutcome:
        return await self._apply(event, self._on_invoice_paid)

    async def invoice_payment_failed(self, event: WebhookEvent) -> HandlerOutcome:
        return await self._apply(event, self._on_invoice_payment_failed)

    # ── Transaction wrapper ─────────────────────────────────────────

    async def _apply(self, event: WebhookEvent, apply: Apply) -> HandlerOutcome:
        async with self._session_factory() as session:
            if self._dedupe_events and await session.get(StripeWebhookEvent, event.id) is not None:
                logger.info("stripe_duplicate_event_ignored", event_id=event.id, event_type=event.type)
                return HandlerOutcome(action="duplicate", duplicate=True)

            outcome = await apply(session, event)

            if self._dedupe_events:
                session.add(StripeWebhookEvent(event_id=event.id, event_type=event.type))

            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                # A concurrent delivery of the same event committed first
                if self._dedupe_events and await session.get(StripeWebhookEvent, event.id) is not None:
                    logger.info("stripe_duplicate_event_ignored", event_id=event.id, event_type=event.type)
                    return HandlerOutcome(action="duplicate", duplicate=True)
                raise

        logger.info(
            "stripe_event_reconciled",
            event_id=event.id,
            event_type=event.type,
            action=outcome.action,
            entity_id=outcome.entity_id,
            user_id=outcome.user_id,
            verified=event.verified,
        )
        if self._metrics is not None:
            await self._metrics.emit(METRIC_EVENTS[outcome.action], user_id=outcome.user_id)
        return outcome

    # ── Subscription events ─────────────────────────────────────────

    async def _on_subscription_created(self, session: AsyncSession, event: WebhookEvent) -> HandlerOutcome:
        return await self._sync_subscription(session, event, action="subscription_created")

    async def _on_subscription_updated(self, session: AsyncSession, event: WebhookEvent) -> HandlerOutcome:
        return await self._sync_subscription(session, event, action="subscription_updated")

    async def _on_subscription_deleted(self, session: AsyncSession, event: WebhookEvent) -> HandlerOutcome:
        return await self._sync_subscription(
            session,
            event,
            action="subscription_deleted",
            status=SubscriptionStatus.CANCELED,
        )

    async def _sync_subscription(
        self,
        session: AsyncSession,
        event: WebhookEvent,
        action: str,
        status: str | None = None,
    ) -> HandlerOutcome:
        subscription = event.object
        stripe_subscription_id = subscription["id"]
        user = await self._resolve_user(session, event)

        canceling = status == SubscriptionStatus.CANCELED
        stored_plan = await self._stored_plan(session, stripe_subscription_id) if canceling else None
        plan = stored_plan or await self._plans.plan_for_subscription(subscription)
        status = status or subscription["status"]
        current_period_end = period_end(subscription)

        await self._upsert_subscription(
            session,
            user_id=user.id,
            stripe_subscription_id=stripe_subscription_id,
            plan=plan,
            status=status,
            current_period_end=current_period_end,
            # A cancellation keeps the plan the record already has
            update_plan=not canceling,
        )
        logger.info(
            "subscription_upserted",
            subscription_id=stripe_subscription_id,
            user_id=user.id,
            status=status,
            plan=plan,
        )

        self._audit(
            session,
            entity_type="subscription",
            entity_id=stripe_subscription_id,
            action=action,
            actor_id=user.id,
            data={
                "event_id": event.id,
                "customer_id": event.customer_id,
                "status": status,
                "plan": plan,
                "current_period_end": current_period_end.isoformat() if current_period_end else None,
            },
        )
        return HandlerOutcome(action=action, entity_id=stripe_subscription_id, user_id=user.id)

    # ── Invoice events ──────────────────────────────────────────────

    async def _on_invoice_paid(self, session: AsyncSession, event: WebhookEvent) -> HandlerOutcome:
        invoice = event.object
        user = await self._resolve_user(session, event)
        subscription_id = invoice_subscription_id(invoice)

        status_updated = await self._set_status(session, user.id, subscription_id, SubscriptionStatus.ACTIVE)

        self._audit(
            session,
            entity_type="invoice",
            entity_id=invoice["id"],
            action="invoice_paid",
            actor_id=user.id,
            data={
                "event_id": event.id,
                "customer_id": event.customer_id,
                "subscription_id": subscription_id,
                "amount_paid": invoice.get("amount_paid"),
                "currency": invoice.get("currency"),
                "status_updated": status_updated,
            },
        )
        return HandlerOutcome(action="invoice_paid", entity_id=invoice["id"], user_id=user.id)

    async def _on_invoice_payment_failed(self, session: AsyncSession, event: WebhookEvent) -> HandlerOutcome:
        invoice = event.object
        user = await self._resolve_user(session, event)
        subscription_id = invoice_subscription_id(invoice)

        status_updated = await self._set_status(session, user.id, subscription_id, SubscriptionStatus.PAST_DUE)

        self._audit(
            session,
            entity_type="invoice",
            entity_id=invoice["id"],
            action="invoice_payment_failed",
            actor_id=user.id,
            data={
                "event_id": event.id,
                "customer_id": event.customer_id,
                "subscription_id": subscription_id,
                "attempt_count": invoice.get("attempt_count"),
                "amount_due": invoice.get("amount_due"),
                "currency": invoice.get("currency"),
                "status_updated": status_updated,
            },
        )
        return HandlerOutcome(action="invoice_payment_failed", entity_id=invoice["id"], user_id=user.id)

    # ── Persistence helpers ─────────────────────────────────────────

    async def _resolve_user(self, session: AsyncSession, event: WebhookEvent) -> User:
        """Find the user owning the event's Stripe customer.

        Falls back to the ``user_id`` checkout stamps into subscription
        metadata, attaching the customer to that user the first time.
        """
        customer_id = event.customer_id
        if customer_id:
            result = await session.execute(select(User).where(User.stripe_customer_id == customer_id))
            user = result.scalar_one_or_none()
            if user is not None:
                return user

        user_id = metadata_user_id(event.object)
        if customer_id and user_id:
            user = await session.get(User, user_id)
            if user is not None and user.stripe_customer_id is None:
                user.stripe_customer_id = customer_id
                logger.info("stripe_customer_attached", user_id=user.id, customer_id=customer_id)
                return user

        logger.warning(
            "stripe_event_unknown_customer",
            event_id=event.id,
            event_type=event.type,
            customer_id=customer_id,
        )
        raise UnknownCustomer(customer_id)

    @staticmethod
    async def _stored_plan(session: AsyncSession, stripe_subscription_id: str) -> str | None:
        result = await session.execute(
            select(Subscription.plan).where(Subscription.stripe_subscription_id == stripe_subscription_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _upsert_subscription(
        session: AsyncSession,
        *,
        user_id: str,
        stripe_subscription_id: str,
        plan: str,
        status: str,
        current_period_end: datetime | None,
        update_plan: bool = True,
    ) -> None:
        now = datetime.now(UTC)
        table = Subscription.__table__
        stmt = dialect_insert(session, Subscription).values(
            user_id=user_id,
            stripe_subscription_id=stripe_subscription_id,
            plan=plan,
            status=status,
            current_period_end=current_period_end,
            created_at=now,
            updated_at=now,
        )
        changes = {
            "status": stmt.excluded.status,
            "current_period_end": func.coalesce(stmt.excluded.current_period_end, table.c.current_period_end),
            "updated_at": stmt.excluded.updated_at,
        }
        if update_plan:
            changes["plan"] = stmt.excluded.plan
        stmt = stmt.on_conflict_do_update(index_elements=["stripe_subscription_id"], set_=changes)
        await session.execute(stmt)

    @staticmethod
    async def _set_status(
        session: AsyncSession,
        user_id: str,
        stripe_subscription_id: str | None,
        status: str,
    ) -> bool:
        """Set the status of one of the user's subscriptions. Returns whether a row changed."""
        if not stripe_subscription_id:
            return False

        result = await session.execute(
            update(Subscription)
            .where(
                Subscription.stripe_subscription_id == stripe_subscription_id,
                Subscription.user_id == user_id,
            )
            .values(status=status, updated_at=datetime.now(UTC))
        )
        if result.rowcount == 0:
            logger.warning(
                "invoice_subscription_not_found",
                subscription_id=stripe_subscription_id,
                user_id=user_id,
            )
            return False

        logger.info("subscription_status_set", subscription_id=stripe_subscription_id, status=status)
        return True

    @staticmethod
    def _audit(
        session: AsyncSession,
        *,
        entity_type: str,
        entity_id: str,
        action: str,
        actor_id: str,
        data: dict,
    ) -> None:
        session.add(
            ActivityLog(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor_id=actor_id,
                data=data,
            )
        )
