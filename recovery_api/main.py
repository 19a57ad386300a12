"""Password Recovery FastAPI Application."""

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from recovery_api.config import settings, validate_main_api_settings
from recovery_api.core.errors import RecoveryError
from recovery_api.core.verification_store import VerificationStore
from recovery_api.logging_config import get_logger, setup_logging
from recovery_api.middleware import CorrelationIdMiddleware, SecurityHeadersMiddleware
from recovery_api.middleware.rate_limit import limiter, rate_limit_exceeded_handler
from recovery_api.routers import health, recovery
from recovery_api.schemas.recovery import REQUIRED_FIELD_MESSAGES
from recovery_api.services.audit_service import AuditService
from recovery_api.services.main_api import MainApiClient
from recovery_api.services.messaging import get_message_sender
from recovery_api.services.recovery import RecoveryWorkflow
from recovery_api.services.scheduler import start_scheduler, stop_scheduler

setup_logging(
    log_format=settings.log_format,
    log_level=settings.log_level,
    service_name=settings.service_name,
)
logger = get_logger(__name__)

API_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the recovery components once and tear them down on shutdown."""
    validate_main_api_settings()

    store = VerificationStore()
    main_api = MainApiClient(
        base_url=settings.main_api_url,
        master_token=settings.api_master_token,
        timeout=settings.main_api_timeout_seconds,
        health_timeout=settings.main_api_health_timeout_seconds,
    )
    sender = get_message_sender(settings)

    app.state.store = store
    app.state.main_api = main_api
    app.state.workflow = RecoveryWorkflow(
        store=store,
        resolver=main_api,
        sender=sender,
        audit=AuditService(main_api),
        password_updater=main_api,
        session_invalidator=main_api,
        settings=settings,
    )
    logger.info(
        "Password Recovery API started",
        port=settings.port,
        main_api_url=settings.main_api_url,
        messaging_provider=sender.provider_name,
    )

    if not settings.testing:
        start_scheduler(store)

    yield

    logger.info("Shutting down Password Recovery API...")
    stop_scheduler()
    store.clear()
    await main_api.aclose()
    logger.info("Password Recovery API shutdown complete")


app = FastAPI(
    title="Password Recovery API",
    description="WhatsApp-based password recovery for the main user API",
    version=API_VERSION,
    lifespan=lifespan,
)

app.state.limiter = limiter

# Middleware (order matters: first added = last executed)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(CorrelationIdMiddleware)


@app.exception_handler(RecoveryError)
async def recovery_error_handler(request: Request, exc: RecoveryError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(include_details=settings.is_development),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report the first invalid field as 400 ``{error, field}``."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = first.get("loc", ())
    field = loc[-1] if len(loc) > 1 and isinstance(loc[-1], str) else None

    if first.get("type") == "value_error":
        ctx_error = first.get("ctx", {}).get("error")
        message = (
            str(ctx_error)
            if ctx_error
            else str(first.get("msg", "")).removeprefix("Value error, ")
        )
    elif field in REQUIRED_FIELD_MESSAGES:
        message = REQUIRED_FIELD_MESSAGES[field]
    else:
        message = "Invalid request body"

    content: dict[str, Any] = {"error": message}
    if field:
        content["field"] = field
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        content: dict[str, Any] = {"error": "Route not found", "path": request.url.path}
    else:
        content = {"error": str(exc.detail)}
    return JSONResponse(
        status_code=exc.status_code, content=content, headers=exc.headers
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path)
    content: dict[str, Any] = {
        "error": "Internal server error",
        "timestamp": datetime.now(UTC).isoformat(),
    }
    if settings.is_development:
        content["details"] = str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content
    )


app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.include_router(health.router)
app.include_router(recovery.router)


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint."""
    return {
        "name": "Password Recovery API",
        "version": API_VERSION,
        "docs": "/docs",
    }


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "recovery_api.main:app",
        host="0.0.0.0",
        port=settings.port,
        log_config=None,
    )
