"""Event routing: EventKind -> reconciler handler."""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

import structlog

from app.billing.events import EventKind, WebhookEvent
from app.core.exceptions import HandlerFailed

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class HandlerOutcome:
    """What a handler did with an event."""

    action: str
    entity_id: str | None = None
    user_id: str | None = None
    duplicate: bool = False


Handler = Callable[[WebhookEvent], Awaitable[HandlerOutcome]]


@dataclass(frozen=True)
class DispatchResult:
    event_type: str
    handled: bool
    duplicate: bool = False


class EventRouter:
    """Static dispatch table over ``EventKind``.

    ``UNHANDLED`` events, and kinds without a registered handler, are
    acknowledged without side effects: Stripe keeps adding event types and
    would redeliver forever on a non-2xx answer.
    """

    def __init__(self, handlers: Mapping[EventKind, Handler]):
        if EventKind.UNHANDLED in handlers:
            raise ValueError("UNHANDLED cannot have a handler")
        self._handlers = dict(handlers)

    @property
    def kinds(self) -> frozenset[EventKind]:
        return frozenset(self._handlers)

    async def dispatch(self, event: WebhookEvent) -> DispatchResult:
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.info("stripe_event_unhandled", event_type=event.type, event_id=event.id)
            return DispatchResult(event_type=event.type, handled=False)

        try:
            outcome = await handler(event)
        except Exception as exc:
            raise HandlerFailed(event.type, exc) from exc

        return DispatchResult(event_type=event.type, handled=True, duplicate=outcome.duplicate)
