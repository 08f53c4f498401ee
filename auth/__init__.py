"""
Authentication module for Viotraix.

Verifies access tokens issued by the hosted auth provider and exposes the
caller to FastAPI routes.
"""

from .models import AuthUser
from .session import AuthMiddleware, get_current_user, require_auth

__all__ = [
    "AuthMiddleware",
    "AuthUser",
    "get_current_user",
    "require_auth",
]
