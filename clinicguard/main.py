"""
Clinic Tenant Safety Kernel

FastAPI application entry point. The HTTP surface is a thin adapter over
the kernel: audit trail, feature flags, permission grants and integrity
sweeps. Clinical CRUD endpoints live in the consuming application.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from clinicguard.config import get_settings
from clinicguard.database import check_db, close_db, init_db
from clinicguard.api.v1 import router as api_v1_router
from clinicguard.api.errors import register_exception_handlers
from clinicguard.api.middleware.rate_limit import RateLimitMiddleware
from clinicguard.api.middleware.request_context import RequestContextMiddleware
from clinicguard.schemas.common import HealthResponse
from clinicguard.logging_config import configure_logging, get_logger

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.

    Runs startup and shutdown tasks.
    """
    # Configure logging first
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )

    # Startup
    logger.info("Starting %s v%s", settings.project_name, settings.version)
    await init_db()
    logger.info("Database initialized")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.project_name,
    description="""
    Clinic Tenant Safety Kernel

    Tenant isolation, reference validation, permission gating and audit
    trail for a multi-clinic backend.

    ## Guarantees

    1. Tenant isolation: every scoped query carries the caller's clinic
    2. Reference validation: cross-clinic links are rejected before writing
    3. Permission gate: role defaults, explicit grants, feature gates
    4. Audit trail: exactly one immutable entry per accepted mutation
    """,
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# Middleware order: LAST added = OUTERMOST. Request context wraps rate limiting
# so 429 responses carry a request id too.
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)

register_exception_handlers(app)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
):
    """Handle request validation errors."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })
    content = {"detail": "Validation error", "errors": errors}
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        content["request_id"] = req_id
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content=content,
    )


@app.exception_handler(Exception)
async def general_exception_handler(
    request: Request,
    exc: Exception,
):
    """Handle unexpected exceptions without leaking internals."""
    logger.exception("Unhandled exception: %s", exc)
    req_id = getattr(request.state, "request_id", None)
    if settings.debug:
        content = {
            "detail": str(exc),
            "type": type(exc).__name__,
            "request_id": req_id,
        }
    else:
        content = {"detail": "Internal server error", "request_id": req_id}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content,
    )


# Health check endpoint
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Check application health, including a round trip to the database."""
    database_ok = await check_db()
    return HealthResponse(
        status="ok" if database_ok else "degraded",
        version=settings.version,
        database="connected" if database_ok else "unavailable",
    )


# Mount API v1 routes
app.include_router(
    api_v1_router,
    prefix=settings.api_v1_prefix,
)


# Main entry point for development
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "clinicguard.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
