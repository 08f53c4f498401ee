"""
Audit quota enforcement.

Gatekeeping for the upload endpoint: resolves the caller's entitlement and
turns a refusal into the 403 payload the dashboard understands.

Example usage:
    allowed, error, usage = await check_audit_quota(session, user.id)
    if not allowed:
        return JSONResponse(status_code=403, content=error)
"""

from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.billing import supports_batch_upload
from core.logging import get_logger
from core.models import Plan, UsageInfo
from quota.usage import resolve_usage

logger = get_logger(__name__)

NO_PLAN_MESSAGE = "No active plan. Please purchase an audit or subscribe to a plan."
LIMIT_REACHED_MESSAGE = (
    "You have reached your audit limit for this billing period. Please upgrade your plan."
)
BATCH_REQUIRES_PRO_MESSAGE = "Bulk upload is only available on the Pro plan."


def quota_error(usage: UsageInfo) -> Dict[str, Any]:
    """
    Build the 403 body for a user who may not audit.

    ``usage`` is echoed back so the client can render the upgrade prompt.
    """
    message = NO_PLAN_MESSAGE if usage.plan == Plan.NONE else LIMIT_REACHED_MESSAGE
    return {
        "error": message,
        "usage": usage.model_dump(mode="json", by_alias=True),
    }


async def check_audit_quota(
    session: AsyncSession,
    user_id: UUID,
    image_count: int = 1,
) -> Tuple[bool, Optional[Dict[str, Any]], UsageInfo]:
    """
    Check whether ``user_id`` may start an audit of ``image_count`` images.

    Returns:
        Tuple of (allowed, error_response_data, usage)

    Example:
        >>> allowed, error, usage = await check_audit_quota(session, user.id)
        >>> allowed
        True
    """
    usage = await resolve_usage(session, user_id)

    if not usage.can_audit:
        logger.info(
            "Audit refused by quota",
            extra={"user_id": str(user_id), "plan": usage.plan.value,
                   "audits_used": usage.audits_used, "audits_limit": usage.audits_limit},
        )
        return False, quota_error(usage), usage

    if image_count > 1 and not supports_batch_upload(usage.plan):
        return False, {"error": BATCH_REQUIRES_PRO_MESSAGE}, usage

    return True, None, usage
