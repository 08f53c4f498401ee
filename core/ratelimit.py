"""
Request rate limiting shared by the API routers.

Authenticated requests are limited per user, anonymous ones per client
address. Set VT_TEST_DISABLE_RATELIMIT=1 to turn limiting off in tests.
"""

import os

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

RATE_LIMIT_PER_MIN = int(os.environ.get("RATE_LIMIT_PER_MIN", "10"))


def rate_limit_key(request: Request) -> str:
    user = getattr(request.state, "user", None)
    if user is not None:
        return f"user:{user.id}"
    return get_remote_address(request)


limiter = Limiter(key_func=rate_limit_key)


def get_rate_limit_decorator(per_minute: int = RATE_LIMIT_PER_MIN):
    """
    Rate limit decorator, or a no-op when limiting is disabled for tests.

    Decorated endpoints must accept a ``request: Request`` argument.

    Example:
        @router.post("/upload")
        @get_rate_limit_decorator()
        async def upload(request: Request, ...):
            ...
    """
    if os.environ.get("VT_TEST_DISABLE_RATELIMIT", "").lower() in ("1", "true"):
        def no_limit_decorator(func):
            return func
        return no_limit_decorator
    return limiter.limit(f"{per_minute}/minute")
