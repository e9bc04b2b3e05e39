"""Re-export all models so Base.metadata sees them."""

from app.db.models.activity_log import ActivityLog
from app.db.models.stripe_event import StripeWebhookEvent
from app.db.models.subscription import Subscription, SubscriptionStatus
from app.db.models.user import User

__all__ = [
    "ActivityLog",
    "StripeWebhookEvent",
    "Subscription",
    "SubscriptionStatus",
    "User",
]
