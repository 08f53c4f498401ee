"""
Lemon Squeezy webhook event handling.

Each supported ``meta.event_name`` maps to one handler that mutates the
profile, usage_tracking or one_time_purchases tables. Unknown events are
acknowledged and ignored.

Signature verification happens in the route before anything here runs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.billing import DEFAULT_PERIOD_DAYS, plan_from_variant
from core.errors import InvalidRequestError
from core.logging import get_logger
from core.models import Plan, SubscriptionStatus
from core.models_sql import Profile, utcnow
from quota.usage import record_one_time_purchase, start_billing_period

logger = get_logger(__name__)


@dataclass
class WebhookEvent:
    name: str
    user_id: UUID
    custom_data: Dict[str, Any]
    object_id: Optional[str]
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "WebhookEvent":
        """
        Pull the fields we use out of a decoded webhook body.

        Raises:
            InvalidRequestError: not an object, or no usable ``user_id`` in
                ``meta.custom_data``
        """
        if not isinstance(payload, dict):
            raise InvalidRequestError("Invalid payload")

        meta = payload.get("meta") or {}
        custom_data = meta.get("custom_data") or {}
        raw_user_id = custom_data.get("user_id")
        if not raw_user_id:
            raise InvalidRequestError("No user ID")
        try:
            user_id = UUID(str(raw_user_id))
        except ValueError as exc:
            raise InvalidRequestError("No user ID") from exc

        data = payload.get("data") or {}
        object_id = data.get("id")
        return cls(
            name=str(meta.get("event_name") or ""),
            user_id=user_id,
            custom_data=custom_data,
            object_id=str(object_id) if object_id is not None else None,
            attributes=data.get("attributes") or {},
        )


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from the provider; returns None when absent or malformed."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable webhook timestamp: {value!r}")
        return None


def _period_bounds(event: WebhookEvent, now: datetime) -> tuple[datetime, datetime]:
    start = parse_timestamp(event.attributes.get("created_at")) or now
    end = parse_timestamp(event.attributes.get("renews_at")) or start + timedelta(days=DEFAULT_PERIOD_DAYS)
    return start, end


def subscription_plan_for(event: WebhookEvent) -> Plan:
    """Plan bought by a new subscription: the checkout tier, else the variant, else basic."""
    tier = event.custom_data.get("tier")
    if tier in (Plan.BASIC.value, Plan.PRO.value):
        return Plan(tier)
    return plan_from_variant(event.attributes.get("variant_id")) or Plan.BASIC


async def _get_or_create_profile(session: AsyncSession, event: WebhookEvent) -> Profile:
    profile = await session.get(Profile, event.user_id)
    if profile is None:
        email = event.attributes.get("user_email") or ""
        profile = Profile(id=event.user_id, email=email)
        session.add(profile)
        logger.warning("Webhook for unknown profile, creating it", extra={"user_id": str(event.user_id)})
    return profile


async def handle_subscription_created(session: AsyncSession, event: WebhookEvent, now: datetime) -> None:
    plan = subscription_plan_for(event)
    start, end = _period_bounds(event, now)

    profile = await _get_or_create_profile(session, event)
    profile.plan = plan
    profile.subscription_status = SubscriptionStatus.ACTIVE
    profile.current_period_start = start
    profile.current_period_end = end
    if event.attributes.get("customer_id") is not None:
        profile.ls_customer_id = str(event.attributes["customer_id"])
    profile.ls_subscription_id = event.object_id
    profile.updated_at = now
    session.add(profile)

    await start_billing_period(session, event.user_id, plan, start, end)


async def handle_subscription_renewed(session: AsyncSession, event: WebhookEvent, now: datetime) -> None:
    # Redelivery of this event opens another period and resets the counter again.
    profile = await _get_or_create_profile(session, event)
    plan = profile.plan if profile.plan.is_subscription else Plan.BASIC
    start, end = _period_bounds(event, now)

    profile.plan = plan
    profile.subscription_status = SubscriptionStatus.ACTIVE
    profile.current_period_start = start
    profile.current_period_end = end
    profile.updated_at = now
    session.add(profile)

    row = await start_billing_period(session, event.user_id, plan, start, end)
    logger.info(
        "Billing period rolled over",
        extra={"user_id": str(event.user_id), "event": event.name, "usage_id": str(row.id)},
    )


async def handle_subscription_cancelled(session: AsyncSession, event: WebhookEvent, now: datetime) -> None:
    profile = await _get_or_create_profile(session, event)
    profile.subscription_status = SubscriptionStatus.CANCELLED
    profile.updated_at = now
    session.add(profile)


async def handle_subscription_expired(session: AsyncSession, event: WebhookEvent, now: datetime) -> None:
    profile = await _get_or_create_profile(session, event)
    profile.subscription_status = SubscriptionStatus.EXPIRED
    profile.plan = Plan.NONE
    profile.updated_at = now
    session.add(profile)


async def handle_payment_failed(session: AsyncSession, event: WebhookEvent, now: datetime) -> None:
    profile = await _get_or_create_profile(session, event)
    profile.subscription_status = SubscriptionStatus.PAST_DUE
    profile.updated_at = now
    session.add(profile)


async def handle_order_created(session: AsyncSession, event: WebhookEvent, now: datetime) -> None:
    await record_one_time_purchase(session, event.user_id, event.object_id)


EventHandler = Callable[[AsyncSession, WebhookEvent, datetime], Awaitable[None]]

EVENT_HANDLERS: Dict[str, EventHandler] = {
    "subscription_created": handle_subscription_created,
    "subscription_payment_success": handle_subscription_renewed,
    "subscription_resumed": handle_subscription_renewed,
    "subscription_cancelled": handle_subscription_cancelled,
    "subscription_expired": handle_subscription_expired,
    "subscription_payment_failed": handle_payment_failed,
    "order_created": handle_order_created,
}


async def apply_webhook_event(session: AsyncSession, event: WebhookEvent,
                              now: Optional[datetime] = None) -> bool:
    """
    Apply one verified webhook event.

    Returns:
        True if the event was handled, False if it was ignored
    """
    handler = EVENT_HANDLERS.get(event.name)
    if handler is None:
        logger.info(f"Ignoring webhook event: {event.name or '<missing>'}")
        return False

    logger.info(f"Processing webhook event: {event.name}", extra={"user_id": str(event.user_id)})
    await handler(session, event, now or utcnow())
    return True
