"""
Request authentication for Viotraix.

``AuthMiddleware`` resolves the caller from a Bearer token or the session
cookie and stores it on ``request.state.user``; routes depend on
``require_auth`` to insist on one.
"""

from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.errors import AuthenticationError

from .models import AuthUser
from .tokens import ACCESS_TOKEN_COOKIE, verify_access_token


def extract_token(request: Request) -> Optional[str]:
    """Bearer header first, then the session cookie."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get(ACCESS_TOKEN_COOKIE)


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware attaching the authenticated user, if any, to the request."""

    skip_paths = (
        "/health",
        "/docs",
        "/redoc",
        "/openapi.json",
        "/api/webhook",
        "/api/cron/",
    )

    async def dispatch(self, request: Request, call_next):
        request.state.user = None

        if not self._should_skip_auth(request.url.path):
            token = extract_token(request)
            if token:
                request.state.user = verify_access_token(token)

        return await call_next(request)

    def _should_skip_auth(self, path: str) -> bool:
        return any(path.startswith(skip) for skip in self.skip_paths)


def get_current_user(request: Request) -> Optional[AuthUser]:
    return getattr(request.state, "user", None)


def require_auth(request: Request) -> AuthUser:
    """Dependency: the authenticated caller, or 401."""
    user = get_current_user(request)
    if user is None:
        raise AuthenticationError()
    return user
