"""
Dashboard API Routes

Usage and statistics endpoints feeding the dashboard views.

Example usage:
    GET /api/usage - Current entitlement (canAudit, auditsUsed, auditsLimit, plan, ...)
    GET /api/stats - Aggregated audit statistics
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from auth.models import AuthUser
from auth.session import require_auth
from core.db import get_session
from core.logging import get_logger
from core.models_sql import Audit
from core.stats import compute_stats
from quota.usage import resolve_usage

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["dashboard"])


@router.get("/usage")
async def get_usage(
    user: AuthUser = Depends(require_auth),
    session: AsyncSession = Depends(get_session),
) -> JSONResponse:
    """
    Get the caller's current entitlement.

    Example:
        GET /api/usage
        Authorization: Bearer <access_token>

        Response:
        {"canAudit": true, "auditsUsed": 3, "auditsLimit": 50,
         "plan": "basic", "expired": false, "expiredAt": null}
    """
    usage = await resolve_usage(session, user.id)
    await session.commit()
    return JSONResponse(usage.model_dump(mode="json", by_alias=True))


@router.get("/stats")
async def get_stats(
    user: AuthUser = Depends(require_auth),
    session: AsyncSession = Depends(get_session),
) -> JSONResponse:
    result = await session.execute(
        select(Audit).where(Audit.user_id == user.id).order_by(Audit.created_at.asc())
    )
    return JSONResponse(compute_stats(result.scalars().all()))
