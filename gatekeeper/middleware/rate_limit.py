"""
Rate Limiting for the unauthenticated login endpoints

Password and second-factor submission are throttled per client address to
slow down online guessing.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from gatekeeper.config import settings
from gatekeeper.exception_handlers import create_error_response
from gatekeeper.exceptions import ErrorCode

TOKEN_LIMIT = "10/minute"
VERIFY_LIMIT = "10/minute"
SEND_CODE_LIMIT = "3/minute"

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    headers_enabled=False,
    enabled=settings.rate_limit_enabled,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return create_error_response(request, 429, f"Rate limit exceeded: {exc.detail}", ErrorCode.RATE_LIMIT_EXCEEDED)


def configure_rate_limiting(app):
    """
    Configure rate limiting for the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
