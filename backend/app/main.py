"""QuoteFlow billing backend: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# Logging is configured before any module below calls structlog.get_logger
from app.core.logging import configure_structlog
from app.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import api_router
from app.billing.container import build_billing_services
from app.core.config import Settings, get_settings
from app.db import create_engine, create_session_factory, create_tables
from app.middleware.correlation import get_correlation_id, setup_correlation_middleware

logger = structlog.get_logger(__name__)


def validate_billing_config(settings: Settings | None = None) -> None:
    """Fail fast on billing settings that are unsafe outside debug mode."""
    settings = settings or get_settings()
    if settings.debug:
        return  # Skip in dev/test mode
    required = {
        "stripe_secret_key": settings.stripe_secret_key,
        "stripe_webhook_secret": settings.stripe_webhook_secret,
    }
    missing = [k for k, v in required.items() if not v]
    if missing:
        raise RuntimeError(f"Missing Stripe settings at startup: {missing}")
    if settings.stripe_webhook_allow_unsigned:
        raise RuntimeError("stripe_webhook_allow_unsigned is only permitted in debug mode")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the billing services on startup and dispose of the engine on shutdown."""
    # SIGTERM flips this so the health check returns 503 while draining
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    validate_billing_config(settings)
    logger.info("billing_config_validated", query_source=settings.subscription_query_source)

    # Tests pre-install their own container
    if getattr(app.state, "billing", None) is None:
        engine = create_engine(settings.database_url, echo=settings.debug)
        await create_tables(engine)
        logger.info("db_initialized")
        app.state.billing = build_billing_services(settings, create_session_factory(engine), engine=engine)

    if not app.state.billing.verifier.verifies_signatures:
        logger.warning("stripe_webhook_signature_verification_disabled")

    yield

    logger.info("shutdown_begin")
    if app.state.billing.engine is not None:
        await app.state.billing.engine.dispose()
    logger.info("shutdown_complete")


def _error_response(request: Request, status_code: int, detail, event: str, **fields) -> JSONResponse:
    """Log ``event`` with request context and return ``{detail, debug_id}``.

    The debug_id ties the sanitized client body to the server-side log line.
    """
    debug_id = str(uuid.uuid4())
    logger.error(
        event,
        status_code=status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        **fields,
    )
    return JSONResponse(status_code=status_code, content={"detail": detail, "debug_id": debug_id})


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.detail, "http_exception", http_detail=exc.detail)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unhandled errors: full traceback in the log, generic 500 to the client."""
    return _error_response(
        request,
        500,
        "Internal server error",
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="QuoteFlow billing: Stripe webhooks and subscription status",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.billing = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, *settings.cors_allowed_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_correlation_middleware(app)

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=_early_settings.debug)
