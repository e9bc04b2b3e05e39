"""Webhook authenticity checks over the raw request body."""

import json

import stripe
import structlog

from app.billing.events import WebhookEvent
from app.core.exceptions import (
    MalformedPayload,
    MissingSignatureHeader,
    SignatureInvalid,
    WebhookNotConfigured,
)
from app.integrations.stripe_gateway import StripeGateway

logger = structlog.get_logger(__name__)


class WebhookVerifier:
    """Turns ``(raw body, stripe-signature)`` into a trusted ``WebhookEvent``.

    With a signing secret the signature is checked against the exact bytes
    received. Without one, bodies are trusted unverified only when
    ``allow_unsigned`` is set (local/manual testing); otherwise every
    request fails closed with ``WebhookNotConfigured``.
    """

    def __init__(self, signing_secret: str, allow_unsigned: bool = False):
        self._signing_secret = signing_secret
        self._allow_unsigned = allow_unsigned

    @property
    def verifies_signatures(self) -> bool:
        return bool(self._signing_secret)

    def verify(self, body: bytes, signature: str | None) -> WebhookEvent:
        if not signature:
            raise MissingSignatureHeader()

        if self._signing_secret:
            try:
                StripeGateway.construct_event(body, signature, self._signing_secret)
            except stripe.SignatureVerificationError as exc:
                raise SignatureInvalid(f"Webhook signature verification failed: {exc}") from exc
            except ValueError as exc:
                raise MalformedPayload(f"Invalid JSON payload: {exc}") from exc
            return self._parse(body, verified=True)

        if not self._allow_unsigned:
            raise WebhookNotConfigured()

        logger.warning("stripe_webhook_unverified", reason="no_signing_secret")
        return self._parse(body, verified=False)

    @staticmethod
    def _parse(body: bytes, verified: bool) -> WebhookEvent:
        """Build the event from the raw body as plain dicts."""
        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, ValueError) as exc:
            raise MalformedPayload(f"Invalid JSON payload: {exc}") from exc

        if not isinstance(payload, dict):
            raise MalformedPayload("Event payload must be a JSON object")

        event_id = payload.get("id")
        event_type = payload.get("type")
        data = payload.get("data")
        obj = data.get("object") if isinstance(data, dict) else None

        if not isinstance(event_id, str) or not isinstance(event_type, str):
            raise MalformedPayload("Event is missing 'id' or 'type'")
        if not isinstance(obj, dict):
            raise MalformedPayload("Event is missing 'data.object'")

        return WebhookEvent(id=event_id, type=event_type, object=obj, verified=verified)
