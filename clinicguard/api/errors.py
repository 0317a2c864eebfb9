"""
Kernel error -> HTTP response mapping.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from clinicguard.kernel.errors import (
    AuditWriteFailed,
    AuthorizationError,
    CoreFeatureLocked,
    CrossTenantReference,
    ImmutableRecordError,
    KernelError,
    MissingTenantContext,
    PermissionDenied,
    ReferenceNotFound,
    ScopingConfigurationError,
    TenantMismatch,
    UnknownPermission,
)
from clinicguard.logging_config import get_logger

logger = get_logger(__name__)

# Most specific class first; the first isinstance match wins.
STATUS_BY_ERROR = (
    (MissingTenantContext, status.HTTP_401_UNAUTHORIZED),
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (TenantMismatch, status.HTTP_403_FORBIDDEN),
    (CrossTenantReference, status.HTTP_403_FORBIDDEN),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (ReferenceNotFound, status.HTTP_404_NOT_FOUND),
    (UnknownPermission, status.HTTP_422_UNPROCESSABLE_CONTENT),
    (CoreFeatureLocked, status.HTTP_409_CONFLICT),
    (ImmutableRecordError, status.HTTP_409_CONFLICT),
    (AuditWriteFailed, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ScopingConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: KernelError) -> int:
    for error_class, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def kernel_error_handler(request: Request, exc: KernelError) -> JSONResponse:
    """Render a kernel error with its stable code."""
    status_code = status_for(exc)
    req_id = getattr(request.state, "request_id", None)

    if status_code >= 500:
        logger.error("Kernel error: %s", exc.message, extra={"code": exc.code})
        # Internal details stay in the logs.
        detail = "Service temporarily unavailable" if status_code == 503 else "Internal server error"
        content = {"detail": detail, "code": exc.code}
    else:
        content = exc.to_dict()
    if req_id:
        content["request_id"] = req_id

    headers = {"X-Request-ID": req_id} if req_id else None
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {**(headers or {}), "WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(KernelError, kernel_error_handler)
