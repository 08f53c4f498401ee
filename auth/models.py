"""
Authentication models for Viotraix.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class AuthUser(BaseModel):
    """Caller identity taken from a verified access token."""

    id: UUID
    email: Optional[str] = None


class SessionRequest(BaseModel):
    """Tokens handed over by the browser after sign-in with the auth provider."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    full_name: Optional[str] = None
