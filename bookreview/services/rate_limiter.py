"""
slowapi limiter shared by all routers.

Tiers come from settings: `rate_limit_default` for reads,
`rate_limit_search` for /books/search and `rate_limit_write` for anything
that creates, edits or deletes a book or review. Requests carrying a valid
access token are counted per user so that reviewers behind one NAT do not
share a bucket; anonymous requests are counted per client IP.

Counters are kept in `rate_limit_storage_uri` (in-process by default).
"""

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from bookreview.config import get_settings
from bookreview.services.security import verify_token_type

logger = logging.getLogger(__name__)
settings = get_settings()


def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Left-most entry is the originating client
        return forwarded_for.split(",")[0].strip()
    return request.headers.get("X-Real-IP", "").strip() or get_remote_address(request)


def rate_limit_key(request: Request) -> str:
    """`user:<id>` for authenticated requests, `ip:<addr>` otherwise."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        payload = verify_token_type(token, "access")
        if payload and payload.get("sub"):
            return f"user:{payload['sub']}"
    return f"ip:{client_ip(request)}"


limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[settings.rate_limit_default],
    storage_uri=settings.rate_limit_storage_uri,
    strategy="fixed-window",
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with Retry-After set to the length of the exhausted window."""
    limit_item = getattr(getattr(exc, "limit", None), "limit", None)
    retry_after = limit_item.get_expiry() if limit_item is not None else 60

    logger.warning(f"Rate limit hit by {rate_limit_key(request)} on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded: {exc.detail}"},
        headers={"Retry-After": str(retry_after)},
    )
