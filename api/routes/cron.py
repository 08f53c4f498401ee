"""
Scheduled job endpoints.

Called by the platform scheduler once a day. When CRON_SECRET is set the
caller must present it as a Bearer token.

Example usage:
    GET /api/cron/renewal-reminders - Send 5-day and 1-day renewal reminders
"""

import hmac
import os

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from core.db import get_session
from core.email import PostmarkSender, get_email_sender
from core.errors import AuthenticationError, ViotraixError
from core.logging import get_logger
from core.models_sql import utcnow
from core.reminders import send_renewal_reminders

logger = get_logger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


def verify_cron_secret(request: Request) -> None:
    """Dependency: reject the call unless it carries CRON_SECRET (when configured)."""
    secret = os.environ.get("CRON_SECRET")
    if not secret:
        return
    provided = request.headers.get("Authorization", "")
    if not hmac.compare_digest(provided.encode(), f"Bearer {secret}".encode()):
        logger.warning("Rejected cron call with bad credentials", extra={"path": request.url.path})
        raise AuthenticationError()


@router.get("/renewal-reminders", dependencies=[Depends(verify_cron_secret)])
async def renewal_reminders(
    session: AsyncSession = Depends(get_session),
    sender: PostmarkSender = Depends(get_email_sender),
) -> JSONResponse:
    now = utcnow()
    try:
        sent = await send_renewal_reminders(session, sender, now=now)
        await session.commit()
    except Exception as exc:
        logger.error(f"Renewal reminder sweep failed: {exc!r}", exc_info=exc)
        raise ViotraixError("Failed to process reminders") from exc

    return JSONResponse({
        "success": True,
        "remindersSent": sent,
        "timestamp": now.isoformat(),
    })
