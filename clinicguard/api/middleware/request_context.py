"""
Request context middleware.

- Generates or accepts the X-Request-ID header and exposes it to logs
- Logs requests the kernel refused (401/403) on the security logger, with
  the tenant and user resolved by authentication when there was one
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from clinicguard.logging_config import get_logger, get_security_logger, request_id_var

logger = get_logger(__name__)
security_logger = get_security_logger()

REQUEST_ID_HEADER = "X-Request-ID"
SLOW_REQUEST_MS = 1000


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Assign a request ID for log correlation and audit origin.

    `request.state.tenant_id` / `request.state.user_id` are filled in by the
    authentication dependency; the middleware only reads them.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        try:
            start = time.perf_counter()
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start) * 1000

            response.headers[REQUEST_ID_HEADER] = request_id

            if response.status_code in (401, 403):
                security_logger.warning(
                    "Request refused",
                    extra={
                        "security_event": "request_refused",
                        "status_code": response.status_code,
                        "method": request.method,
                        "path": request.url.path,
                        "tenant_id": getattr(request.state, "tenant_id", None),
                        "user_id": getattr(request.state, "user_id", None),
                    },
                )
            elif duration_ms > SLOW_REQUEST_MS:
                logger.warning(
                    "Slow request",
                    extra={
                        "path": request.url.path,
                        "method": request.method,
                        "duration_ms": round(duration_ms, 1),
                    },
                )

            return response
        finally:
            request_id_var.reset(token)
