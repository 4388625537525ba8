"""
Rate Limiting Configuration

Uses SlowAPI with in-memory, fixed-window counters keyed by caller identity.
Counters live in this process only; see DESIGN.md for the multi-instance gap.
"""
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from carrier_gateway.core.config import settings

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """
    Get client IP, respecting X-Forwarded-For for proxied requests.
    Falls back to direct IP if header not present.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # First IP in the chain is the original client
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_client_ip,
    enabled=settings.RATE_LIMIT_ENABLED,
    strategy="fixed-window",
)


def reset_rate_limits() -> None:
    """Clear every counter (test isolation and operator reset)."""
    limiter.reset()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """
    Handler for rate limit exceeded errors.
    Returns the gateway's structured error body with a retry-after header.
    """
    logger.warning(
        f"Rate limit exceeded: {get_client_ip(request)} on {request.url.path}"
    )

    return JSONResponse(
        status_code=429,
        content={"error": "Rate limit exceeded"},
        headers={"Retry-After": "60"},
    )


def get_rates_limit():
    """Rate limit for rate quoting."""
    return limiter.limit(settings.RATE_LIMIT_RATES)


def get_tracking_limit():
    """Rate limit for public tracking lookups."""
    return limiter.limit(settings.RATE_LIMIT_TRACKING)


def get_labels_limit():
    """Rate limit for label creation (billable)."""
    return limiter.limit(settings.RATE_LIMIT_LABELS)
