"""
Authentication API Routes

Bridges the hosted auth provider's browser session into httpOnly cookies
and makes sure every signed-in user has a profile row.

Example usage:
    POST /api/auth/session - Store access/refresh tokens as cookies
    POST /api/auth/logout  - Clear the session cookies
    GET  /api/auth/me      - Current user and profile summary
"""

import os

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth.models import AuthUser, SessionRequest
from auth.session import require_auth
from auth.tokens import ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, verify_access_token
from core.db import get_session
from core.errors import AuthenticationError, InvalidRequestError
from core.logging import get_logger
from core.models_sql import Profile

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

DEFAULT_ACCESS_TOKEN_TTL = 3600
REFRESH_TOKEN_TTL = 60 * 60 * 24 * 30


def _secure_cookies() -> bool:
    return os.environ.get("ENVIRONMENT", "development").lower() == "production"


async def ensure_profile(session: AsyncSession, user: AuthUser, full_name=None) -> Profile:
    """Return the user's profile, creating an empty one on first sign-in."""
    profile = await session.get(Profile, user.id)
    if profile is None:
        profile = Profile(id=user.id, email=user.email or "", full_name=full_name)
        session.add(profile)
        await session.flush()
        logger.info("Created profile", extra={"user_id": str(user.id)})
    return profile


@router.post("/session")
async def create_session(
    body: SessionRequest,
    session: AsyncSession = Depends(get_session),
) -> JSONResponse:
    """
    Store the provider's tokens as httpOnly cookies.

    Returns:
        ``{"success": true}`` with ``sb-access-token`` and ``sb-refresh-token`` set
    """
    if not body.access_token or not body.refresh_token:
        raise InvalidRequestError("Missing tokens")

    user = verify_access_token(body.access_token)
    if user is None:
        raise AuthenticationError()

    await ensure_profile(session, user, body.full_name)
    await session.commit()

    response = JSONResponse({"success": True})
    secure = _secure_cookies()
    response.set_cookie(
        ACCESS_TOKEN_COOKIE, body.access_token,
        max_age=body.expires_in or DEFAULT_ACCESS_TOKEN_TTL,
        path="/", httponly=True, secure=secure, samesite="lax",
    )
    response.set_cookie(
        REFRESH_TOKEN_COOKIE, body.refresh_token,
        max_age=REFRESH_TOKEN_TTL,
        path="/", httponly=True, secure=secure, samesite="lax",
    )
    return response


@router.post("/logout")
async def logout(request: Request) -> JSONResponse:
    response = JSONResponse({"success": True})
    response.delete_cookie(ACCESS_TOKEN_COOKIE, path="/")
    response.delete_cookie(REFRESH_TOKEN_COOKIE, path="/")
    return response


@router.get("/me")
async def me(
    user: AuthUser = Depends(require_auth),
    session: AsyncSession = Depends(get_session),
) -> JSONResponse:
    profile = await ensure_profile(session, user)
    await session.commit()
    return JSONResponse({
        "id": str(profile.id),
        "email": profile.email,
        "full_name": profile.full_name,
        "plan": profile.plan.value,
        "subscription_status": profile.subscription_status.value,
    })
