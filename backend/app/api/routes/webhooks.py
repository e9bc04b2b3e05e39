"""Stripe webhook endpoint: verify, route, reconcile."""

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from app.billing.container import BillingServices, get_billing_services
from app.core.exceptions import HandlerFailed, WebhookNotConfigured, WebhookRequestError
from app.schemas.billing import WebhookAck

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/webhooks/stripe", response_model=WebhookAck, response_model_exclude_none=True)
async def stripe_webhook(
    request: Request,
    services: BillingServices = Depends(get_billing_services),
):
    """Handle a Stripe event delivery.

    400 (plain text) for requests that cannot be trusted, 500 when a handler
    fails so Stripe redelivers, 200 otherwise, including event types this
    service does not handle.
    """
    # Signatures cover the exact bytes, so read the body before any parsing
    body = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = services.verifier.verify(body, signature)
    except WebhookNotConfigured as exc:
        logger.error("stripe_webhook_secret_missing")
        return JSONResponse(status_code=503, content={"error": str(exc)})
    except WebhookRequestError as exc:
        logger.warning("stripe_webhook_rejected", reason=type(exc).__name__, error=str(exc))
        return PlainTextResponse(str(exc), status_code=400)

    logger.info(
        "stripe_webhook_received",
        event_type=event.type,
        event_id=event.id,
        verified=event.verified,
    )

    try:
        result = await services.router.dispatch(event)
    except HandlerFailed as exc:
        logger.error(
            "stripe_webhook_handler_failed",
            event_type=exc.event_type,
            event_id=event.id,
            object_id=event.object_id,
            customer_id=event.customer_id,
            error=str(exc.cause),
            error_type=type(exc.cause).__name__,
            exc_info=True,
        )
        return JSONResponse(status_code=500, content={"error": str(exc)})

    if result.duplicate:
        return WebhookAck(duplicate=True)
    if not result.handled:
        return WebhookAck(handled=False)
    return WebhookAck()
