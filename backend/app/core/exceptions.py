class QuoteFlowError(Exception):
    """Base exception for the QuoteFlow backend."""

    pass


# ── Webhook request errors (answered with 400, never reach handlers) ──


class WebhookRequestError(QuoteFlowError):
    """Raised when an inbound webhook request cannot be trusted or parsed."""

    pass


class MissingSignatureHeader(WebhookRequestError):
    """Raised when the stripe-signature header is absent."""

    def __init__(self) -> None:
        super().__init__("Missing stripe-signature header")


class SignatureInvalid(WebhookRequestError):
    """Raised when the signature does not match the raw body."""

    pass


class MalformedPayload(WebhookRequestError):
    """Raised when a trusted body is not a well-formed event."""

    pass


class WebhookNotConfigured(QuoteFlowError):
    """Raised when no signing secret is set and unsigned mode is off."""

    def __init__(self) -> None:
        super().__init__("Stripe webhook endpoint is not configured")


# ── Webhook processing errors (answered with 500 so Stripe redelivers) ──


class WebhookProcessingError(QuoteFlowError):
    """Raised when a verified event could not be applied."""

    pass


class UnknownCustomer(WebhookProcessingError):
    """Raised when no user owns the event's Stripe customer reference."""

    def __init__(self, customer_id: str | None):
        self.customer_id = customer_id
        super().__init__(f"No user found for Stripe customer '{customer_id}'")


class HandlerFailed(WebhookProcessingError):
    """Raised by the event router when a registered handler fails."""

    def __init__(self, event_type: str, cause: BaseException):
        self.event_type = event_type
        self.cause = cause
        super().__init__(f"Handler for '{event_type}' failed: {cause}")
