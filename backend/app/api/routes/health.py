import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Liveness probe. Returns 503 while draining on shutdown."""
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": "quoteflow-billing"},
        )
    return {"status": "healthy", "service": "quoteflow-billing"}


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness probe: database reachable and Stripe keys present."""
    services = request.app.state.billing
    checks = {
        "database": False,
        "stripe": services.gateway.configured,
        "webhook_signing": services.verifier.verifies_signatures,
    }

    try:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error("readiness_database_failed", error=str(e))

    all_healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
