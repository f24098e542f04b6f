import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from tenantflow.db import ping_db, ping_redis

logger = structlog.get_logger(__name__)

router = APIRouter()

SERVICE_NAME = "tenantflow"


@router.get("/health")
async def health_check(request: Request):
    """Liveness for the load balancer; 503 once SIGTERM has been received."""
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(status_code=503, content={"status": "shutting_down", "service": SERVICE_NAME})
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/ready")
async def readiness_check(request: Request):
    """Ready when PostgreSQL, Redis (session locks) and the onboarding service are all up.

    Also reports which billing gateway and notifier are wired, so a deploy
    that silently fell back to the in-process fakes is visible.
    """
    checks = {"database": False, "redis": False, "onboarding_service": False}

    for name, probe in (("database", ping_db), ("redis", ping_redis)):
        try:
            checks[name] = await probe()
        except Exception as e:
            logger.error("readiness_probe_failed", dependency=name, error=str(e))

    service = getattr(request.app.state, "onboarding_service", None)
    collaborators = {}
    if service is not None:
        checks["onboarding_service"] = True
        collaborators = {
            "billing": type(service.engine.billing).__name__,
            "notifier": type(service.engine.notifier).__name__,
        }

    ready = all(checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "degraded", "checks": checks, "collaborators": collaborators},
    )
