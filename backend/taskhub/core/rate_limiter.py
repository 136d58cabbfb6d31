"""Shared SlowAPI rate limiter configuration."""
from __future__ import annotations

import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


def _user_or_ip_key(request: Request) -> str:
    """Return the rate limit bucket key for the current request."""

    # Authenticated callers get their own bucket so that clients behind the
    # same proxy do not throttle each other.
    state_user = getattr(request.state, "user_id", None)
    if state_user:
        return str(state_user)

    return get_remote_address(request)


limiter = Limiter(key_func=_user_or_ip_key)


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return a JSON response when a rate limit is exceeded."""

    logger.warning(
        "Rate limit exceeded for path=%s key=%s", request.url.path, exc.detail
    )
    return JSONResponse(
        {"detail": "Rate limit exceeded", "reason": "rate_limited"},
        status_code=429,
    )
