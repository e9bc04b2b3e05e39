"""Correlation ID middleware.

Every request gets an ``X-Request-ID``; Stripe deliveries carry none, so one
is generated and echoed back, which lets a failed webhook response be matched
to its log lines.
"""

import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI


def setup_correlation_middleware(app: FastAPI) -> None:
    """Add the correlation ID middleware to the app.

    A client-supplied X-Request-ID is echoed back unchanged; otherwise a new
    UUID4 is generated.
    """
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name="X-Request-ID",
        generator=lambda: str(uuid.uuid4()),
        validator=None,
        transformer=lambda a: a,
    )


def get_correlation_id() -> str | None:
    """Return the current request's correlation ID, or None outside a request."""
    try:
        return correlation_id.get()
    except LookupError:
        return None


__all__ = ["setup_correlation_middleware", "get_correlation_id"]
