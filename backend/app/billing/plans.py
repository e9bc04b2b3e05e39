"""Plan name resolution from Stripe prices."""

import structlog

from app.billing.objects import first_price
from app.integrations.stripe_gateway import StripeGateway

logger = structlog.get_logger(__name__)


class PlanResolver:
    """Maps a subscription's price to the plan name shown in the app.

    Order: configured price map, then the Stripe price lookup (nickname,
    then product name), then ``default_plan``. Lookup errors propagate.
    """

    def __init__(
        self,
        gateway: StripeGateway | None,
        plan_names: dict[str, str] | None = None,
        default_plan: str = "Premium",
    ):
        self._gateway = gateway
        self._plan_names = plan_names or {}
        self.default_plan = default_plan

    async def plan_for_price(self, price_id: str | None) -> str:
        if not price_id:
            return self.default_plan
        if price_id in self._plan_names:
            return self._plan_names[price_id]
        if self._gateway is None or not self._gateway.configured:
            logger.debug("plan_lookup_skipped", price_id=price_id, reason="gateway_not_configured")
            return self.default_plan

        price = await self._gateway.retrieve_price(price_id)
        if price.get("nickname"):
            return price["nickname"]
        product = price.get("product")
        if isinstance(product, dict) and product.get("name"):
            return product["name"]
        return self.default_plan

    async def plan_for_subscription(self, subscription: dict) -> str:
        price = first_price(subscription) or {}
        return await self.plan_for_price(price.get("id"))
