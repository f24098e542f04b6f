"""TenantFlow: FastAPI application entry point.

Errors leave the service as ``{"detail", "debug_id", "correlation_id"}``
bodies (plus ``error_type`` for domain errors). ``debug_id`` is unique per
error and appears in the matching log entry; ``correlation_id`` is the
request's X-Request-ID.
"""

import signal
import uuid
from contextlib import asynccontextmanager

# configure_structlog MUST run before the other tenantflow imports: structlog
# caches the processor chain on first use.
from tenantflow.core.logging import configure_structlog
from tenantflow.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tenantflow.api.routes import api_router
from tenantflow.core.auth import validate_jwt_secret
from tenantflow.core.config import get_settings
from tenantflow.core.exceptions import TenantFlowError
from tenantflow.db import close_db, close_redis, get_redis, get_session_factory, init_db, init_redis
from tenantflow.db.repositories import sql_uow_factory
from tenantflow.middleware.correlation import get_correlation_id, setup_correlation_middleware
from tenantflow.services.factory import build_onboarding_service

logger = structlog.get_logger(__name__)

INTERNAL_ERROR_DETAIL = "Internal server error"
DOMAIN_ERROR_DETAIL = "Onboarding operation failed"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # SIGTERM flips this so /api/health returns 503 while connections drain
    app.state.shutting_down = False

    def on_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", draining=True)

    signal.signal(signal.SIGTERM, on_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)
    validate_jwt_secret()

    await init_db()
    await init_redis()
    app.state.onboarding_service = build_onboarding_service(
        settings,
        uow_factory=sql_uow_factory(get_session_factory()),
        redis_client=get_redis(),
    )
    logger.info("startup_complete")

    try:
        yield
    finally:
        await close_redis()
        await close_db()
        logger.info("shutdown_complete")


def _error_response(
    request: Request,
    status_code: int,
    detail,
    event: str,
    log_fields: dict,
    error_type: str | None = None,
    headers: dict | None = None,
    exc_info: bool = False,
) -> JSONResponse:
    """Log the error under a fresh debug_id and build the client body."""
    debug_id = str(uuid.uuid4())
    cid = get_correlation_id()

    log = logger.error if status_code >= 500 else logger.warning
    log(
        event,
        status_code=status_code,
        debug_id=debug_id,
        path=request.url.path,
        method=request.method,
        exc_info=exc_info,
        **log_fields,
    )

    body = {"detail": detail, "debug_id": debug_id, "correlation_id": cid}
    if error_type is not None:
        body["error_type"] = error_type
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(
        request,
        exc.status_code,
        exc.detail,
        "http_exception",
        {"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def tenantflow_exception_handler(request: Request, exc: TenantFlowError) -> JSONResponse:
    """Domain errors carry their own status; 5xx messages stay in the logs."""
    error_type = type(exc).__name__
    detail = str(exc) if exc.status_code < 500 else DOMAIN_ERROR_DETAIL
    return _error_response(
        request,
        exc.status_code,
        detail,
        "domain_exception",
        {"error_type": error_type, "error": str(exc)},
        error_type=error_type,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(
        request,
        500,
        INTERNAL_ERROR_DETAIL,
        "unhandled_exception",
        {"error_type": type(exc).__name__, "error": str(exc)},
        exc_info=True,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(TenantFlowError, tenantflow_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Tenant onboarding workflow service",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(dict.fromkeys([settings.frontend_url, *settings.allowed_origins])),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )
    # Registered after CORS so it is the outermost middleware
    setup_correlation_middleware(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tenantflow.main:app", host="0.0.0.0", port=8000, reload=_early_settings.debug)
