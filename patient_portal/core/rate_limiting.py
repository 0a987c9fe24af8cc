"""Rate limiting configuration using slowapi.

Security: Slows down credential stuffing against log-in and enumeration
through the "send me a link" endpoints.

Requests are keyed on the client IP. The session cookie is not used as a
key: it is unverified at this point, and rotating fake cookies would reset
the limit.

Usage in routers:
    from patient_portal.core.rate_limiting import limiter

    @router.post("/log-in")
    @limiter.limit("5/15minute")
    async def log_in(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from patient_portal.core.config import settings

# In-memory storage (single instance). For multiple instances, configure
# Redis storage via RATELIMIT_STORAGE_URL.
limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle rate limit exceeded errors.

    Returns 429 Too Many Requests with the standard error envelope.

    Args:
        _request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # Retry after one full window of the exceeded limit, e.g. 900s for
    # "5/15minute"; fall back to 60 seconds
    try:
        retry_after = str(int(exc.limit.limit.get_expiry()))
    except (AttributeError, TypeError, ValueError):
        retry_after = "60"

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={"Retry-After": retry_after},
    )
