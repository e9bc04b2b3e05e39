"""Pydantic schemas for billing API responses."""

from datetime import datetime

from pydantic import BaseModel, Field


class SubscriptionStatus(BaseModel):
    """Subscription answer consumed by the SPA to gate premium features."""

    subscribed: bool = Field(..., description="Whether the user holds an entitled subscription")
    plan: str | None = Field(None, description="Plan name when subscribed")
    period_end: datetime | None = Field(None, description="End of the current billing period")


class CheckoutResponse(BaseModel):
    url: str


class PortalResponse(BaseModel):
    url: str


class WebhookAck(BaseModel):
    received: bool = True
    handled: bool | None = None
    duplicate: bool | None = None
