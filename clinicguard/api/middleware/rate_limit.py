"""
API Gateway Rate Limiting - per user (or IP), with a separate operator scope.

Regular staff: rate_limit_api_per_minute per user (or IP when anonymous).
Operators: rate_limit_operator_per_minute per operator across every clinic
they act in, so an operator cannot fan out work by switching tenants.
"""

import time
from typing import Callable, Optional, Tuple

from fastapi import Request, Response, status
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware

from clinicguard.config import get_settings
from clinicguard.logging_config import get_security_logger

security_logger = get_security_logger()


def _get_client_ip(request: Request) -> str:
    """Get client IP from request (X-Forwarded-For or direct)."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _get_token_claims(request: Request) -> Optional[dict]:
    """Decode the Bearer JWT if present. Authorization itself runs later."""
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        return None
    token = auth[7:].strip()
    if not token:
        return None
    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"verify_exp": True},
        )
    except JWTError:
        return None


class InMemoryRateLimitStore:
    """Fixed-window in-memory store. Key -> (count, window_start_ts)."""

    def __init__(self):
        self._data: dict[str, Tuple[int, float]] = {}

    def check_and_incr(
        self,
        scope: str,
        identifier: str,
        limit: int,
        window_seconds: int,
    ) -> bool:
        """Returns True if under limit (and increments). False if over limit (no increment)."""
        key = f"{scope}:{identifier}"
        now = time.monotonic()
        count, start = self._data.get(key, (0, now))
        if now - start >= window_seconds:
            count, start = 0, now
        if count >= limit:
            return False
        self._data[key] = (count + 1, start)
        return True

    def cleanup_old(self, max_age_seconds: int = 3600):
        """Remove entries older than max_age_seconds to avoid unbounded growth."""
        now = time.monotonic()
        to_remove = [k for k, (_, start) in self._data.items() if now - start > max_age_seconds]
        for k in to_remove:
            self._data.pop(k, None)

    def reset(self) -> None:
        self._data.clear()


# Module-level store (single process)
_store: Optional[InMemoryRateLimitStore] = None


def get_store() -> InMemoryRateLimitStore:
    global _store
    if _store is None:
        _store = InMemoryRateLimitStore()
    return _store


def resolve_scope(request: Request) -> Tuple[str, str, int]:
    """(scope, identifier, limit per minute) for a request."""
    settings = get_settings()
    claims = _get_token_claims(request)
    if claims and claims.get("sub"):
        roles = claims.get("roles") or []
        if any(role in settings.bypass_roles for role in roles):
            return "operator", str(claims["sub"]), settings.rate_limit_operator_per_minute
        return "api", str(claims["sub"]), settings.rate_limit_api_per_minute
    return "api", _get_client_ip(request), settings.rate_limit_api_per_minute


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rate limit by scope:
    - operator: requests from bypass-role tokens, per operator
    - api: other /api/v1 requests, per user (or IP)
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        settings = get_settings()
        if not settings.rate_limit_enabled:
            return await call_next(request)

        path = request.url.path or ""
        if not path.startswith(settings.api_v1_prefix):
            return await call_next(request)

        store = get_store()
        # Periodic cleanup
        store.cleanup_old(max_age_seconds=7200)

        scope, identifier, limit = resolve_scope(request)
        allowed = store.check_and_incr(scope, identifier, limit, 60)
        if not allowed:
            if scope == "operator":
                security_logger.warning(
                    "Operator rate limit exceeded",
                    extra={"security_event": "operator_rate_limited", "user_id": identifier},
                )
            return Response(
                content='{"detail":"Too many requests. Please try again later."}',
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                media_type="application/json",
            )
        return await call_next(request)
