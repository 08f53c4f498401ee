"""
Payment and Billing API Routes

Hosted checkout creation and Lemon Squeezy webhook handling.

Example usage:
    POST /api/create-checkout - Create a checkout for single, basic or pro
    POST /api/webhook         - Handle Lemon Squeezy webhooks (signed)
"""

import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth.models import AuthUser
from auth.session import require_auth
from core.db import get_session
from core.errors import InvalidRequestError, ViotraixError, WebhookSignatureError
from core.logging import get_logger, log_with_context
from core.payments import LemonSqueezyClient, get_payment_client, verify_webhook_signature
from core.ratelimit import get_rate_limit_decorator
from core.webhooks import WebhookEvent, apply_webhook_event

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["billing"])

SIGNATURE_HEADER = "X-Signature"
WEBHOOK_FAILED_MESSAGE = "Webhook processing failed"


class CheckoutRequest(BaseModel):
    tier: str = ""


@router.post("/create-checkout")
@get_rate_limit_decorator()
async def create_checkout(
    request: Request,
    body: CheckoutRequest,
    user: AuthUser = Depends(require_auth),
    client: LemonSqueezyClient = Depends(get_payment_client),
) -> JSONResponse:
    """
    Create a hosted checkout for the requested tier.

    Example:
        POST /api/create-checkout
        {"tier": "basic"}

        Response:
        {"checkoutUrl": "https://viotraix.lemonsqueezy.com/checkout/..."}
    """
    url = await client.create_checkout(body.tier, str(user.id), user.email)
    log_with_context(logger, "info", "Checkout created", request=request, tier=body.tier)
    return JSONResponse({"checkoutUrl": url})


@router.post("/webhook")
async def handle_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> JSONResponse:
    """
    Handle a Lemon Squeezy webhook.

    The raw body is verified against ``X-Signature`` before it is parsed;
    a forged or unsigned request never reaches the database. Unknown events
    are acknowledged with 200.
    """
    raw_body = await request.body()
    if not verify_webhook_signature(raw_body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("Rejected webhook with invalid signature")
        raise WebhookSignatureError()

    try:
        payload = json.loads(raw_body)
    except ValueError as exc:
        raise InvalidRequestError("Invalid payload") from exc

    event = WebhookEvent.from_payload(payload)

    try:
        await apply_webhook_event(session, event)
        # Committed before answering so a failed write is reported as 500
        await session.commit()
    except ViotraixError:
        raise
    except Exception as exc:
        logger.error(
            f"Webhook handler failed for {event.name}: {exc!r}",
            extra={"user_id": str(event.user_id)},
            exc_info=exc,
        )
        # Propagating rolls back the session
        raise ViotraixError(WEBHOOK_FAILED_MESSAGE) from exc

    return JSONResponse({"success": True})
