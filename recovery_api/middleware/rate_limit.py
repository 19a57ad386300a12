"""Rate limiting middleware using slowapi.

Protects the recovery endpoints from code guessing and message flooding.
Limits are kept in process memory, matching the single-instance
verification store.
"""

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from recovery_api.config import settings


def _get_real_client_ip(request: Request) -> str:
    """Extract real client IP, respecting X-Forwarded-For behind reverse proxies."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        # Take the first (leftmost) IP -- the original client
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


limiter = Limiter(
    key_func=_get_real_client_ip,
    storage_uri="memory://",
    enabled=not settings.testing,
)

# Applied per-endpoint via @limiter.limit(recovery_rate_limit)
recovery_rate_limit = settings.recovery_rate_limit


async def rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    """Return a 429 JSON response when rate limit is exceeded."""
    return JSONResponse(
        status_code=429,
        content={"error": "Too many attempts, please try again later"},
    )
