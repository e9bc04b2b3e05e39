"""Billing routes: subscription status, Stripe Checkout, and Customer Portal."""

import stripe
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from app.billing.container import BillingServices, get_billing_services
from app.core.auth import AuthUser, require_auth
from app.core.config import Settings, get_settings
from app.schemas.billing import CheckoutResponse, PortalResponse, SubscriptionStatus

logger = structlog.get_logger(__name__)

router = APIRouter()

BILLING_PAGE = "/dashboard/settings/billing"


# ── Helpers ─────────────────────────────────────────────────────────


def _app_origin(request: Request, settings: Settings) -> str:
    """Origin to send the browser back to; unknown origins fall back to the frontend URL."""
    origin = request.headers.get("origin")
    allowed = {settings.frontend_url, *settings.cors_allowed_origins}
    if origin and origin in allowed:
        return origin
    return settings.frontend_url


def _checkout_line_item(settings: Settings) -> dict:
    """Configured Stripe price, or an inline monthly price."""
    if settings.stripe_price_id:
        return {"price": settings.stripe_price_id, "quantity": 1}
    return {
        "price_data": {
            "currency": settings.checkout_currency,
            "product_data": {
                "name": settings.checkout_product_name,
                "description": settings.checkout_product_description,
            },
            "unit_amount": settings.checkout_unit_amount,
            "recurring": {"interval": "month"},
        },
        "quantity": 1,
    }


def _require_gateway(services: BillingServices) -> None:
    if not services.gateway.configured:
        logger.error("stripe_secret_key_missing")
        raise HTTPException(status_code=503, detail="Billing is not configured")


def _require_email(user: AuthUser) -> str:
    if not user.email:
        raise HTTPException(status_code=400, detail="An email address is required for billing")
    return user.email


# ── Endpoints ───────────────────────────────────────────────────────


@router.get("/billing/subscription", response_model=SubscriptionStatus)
async def get_subscription(
    user: AuthUser = Depends(require_auth),
    services: BillingServices = Depends(get_billing_services),
):
    """Return whether the user is subscribed. Never fails on lookup errors."""
    return await services.query.get_status(user)


@router.post("/billing/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    request: Request,
    user: AuthUser = Depends(require_auth),
    services: BillingServices = Depends(get_billing_services),
):
    """Create a Stripe Checkout session and return its URL."""
    _require_gateway(services)
    email = _require_email(user)
    settings = get_settings()
    origin = _app_origin(request, settings)

    try:
        customer_id = await services.gateway.get_or_create_customer(email, user.user_id)
        url = await services.gateway.create_checkout_session(
            customer_id,
            user.user_id,
            success_url=f"{origin}{BILLING_PAGE}?success=true",
            cancel_url=f"{origin}{BILLING_PAGE}?canceled=true",
            line_item=_checkout_line_item(settings),
        )
    except stripe.StripeError as exc:
        logger.error("checkout_session_failed", user_id=user.user_id, error=str(exc), error_type=type(exc).__name__)
        raise HTTPException(status_code=502, detail="Payment provider error")

    return CheckoutResponse(url=url)


@router.post("/billing/portal", response_model=PortalResponse)
async def create_portal_session(
    request: Request,
    user: AuthUser = Depends(require_auth),
    services: BillingServices = Depends(get_billing_services),
):
    """Create a Stripe Customer Portal session and return its URL."""
    _require_gateway(services)
    email = _require_email(user)
    origin = _app_origin(request, get_settings())

    try:
        customer_id = await services.gateway.find_customer_by_email(email)
        if customer_id is None:
            raise HTTPException(status_code=400, detail="No billing account found. Please subscribe first.")
        url = await services.gateway.create_portal_session(customer_id, return_url=f"{origin}{BILLING_PAGE}")
    except stripe.StripeError as exc:
        logger.error("portal_session_failed", user_id=user.user_id, error=str(exc), error_type=type(exc).__name__)
        raise HTTPException(status_code=502, detail="Payment provider error")

    return PortalResponse(url=url)
