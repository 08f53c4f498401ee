"""
Access token verification.

Sessions are issued by the hosted auth provider as HS256 JWTs signed with
the project's JWT secret. ``sub`` carries the user id and ``email`` the
address.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

import jwt

from core.logging import get_logger

from .models import AuthUser

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = os.environ.get("SUPABASE_JWT_AUDIENCE", "authenticated")
ACCESS_TOKEN_COOKIE = "sb-access-token"
REFRESH_TOKEN_COOKIE = "sb-refresh-token"


def _jwt_secret() -> Optional[str]:
    return os.environ.get("SUPABASE_JWT_SECRET")


def verify_access_token(token: str) -> Optional[AuthUser]:
    """Decode ``token`` and return the caller, or None if it does not verify."""
    secret = _jwt_secret()
    if not secret:
        logger.error("SUPABASE_JWT_SECRET not configured - cannot verify sessions")
        return None

    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
    except jwt.ExpiredSignatureError:
        logger.info("Access token expired")
        return None
    except jwt.InvalidTokenError as exc:
        logger.warning(f"Invalid access token: {exc}")
        return None

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        logger.warning("Access token subject is not a user id")
        return None

    return AuthUser(id=user_id, email=payload.get("email"))


def create_access_token(user_id: UUID, email: Optional[str] = None,
                        expires_in: timedelta = timedelta(hours=1),
                        extra_claims: Optional[Dict[str, Any]] = None) -> str:
    """Mint a token the same way the auth provider does. Used by the CLI and tests."""
    secret = _jwt_secret()
    if not secret:
        raise RuntimeError("SUPABASE_JWT_SECRET is not configured")

    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "email": email,
        "aud": JWT_AUDIENCE,
        "role": "authenticated",
        "iat": now,
        "exp": now + expires_in,
    }
    if extra_claims:
        payload.update(extra_claims)
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)
