"""
Usage and entitlement tracking.

Answers "may this user run another audit, and under which plan" from the
profile, the current usage_tracking row and any one-time purchases. Nothing
is cached in process: every call re-derives the answer from the store.

Metering happens after a successful analysis via ``increment_usage``, which
uses conditional UPDATEs so concurrent completions cannot push a counter past
its limit or spend the same one-time credit twice.
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import and_, select

from core.billing import DEFAULT_PERIOD_DAYS, plan_limit
from core.logging import get_logger
from core.models import Plan, SubscriptionStatus, UsageInfo
from core.models_sql import OneTimePurchase, Profile, UsageTracking, as_utc, utcnow

logger = get_logger(__name__)

USABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED)
BLOCKED_STATUSES = (SubscriptionStatus.EXPIRED, SubscriptionStatus.PAST_DUE)


def _expired(expired_at: Optional[datetime]) -> UsageInfo:
    return UsageInfo(can_audit=False, plan=Plan.EXPIRED, expired=True, expired_at=expired_at)


async def get_current_usage_row(session: AsyncSession, user_id: UUID,
                                now: Optional[datetime] = None) -> Optional[UsageTracking]:
    """Newest usage row whose period has not ended yet."""
    now = now or utcnow()
    result = await session.execute(
        select(UsageTracking)
        .where(
            and_(
                UsageTracking.user_id == user_id,
                UsageTracking.period_end >= now,
            )
        )
        .order_by(UsageTracking.created_at.desc())
        .limit(1)
    )
    return result.scalars().first()


async def get_remaining_credits(session: AsyncSession, user_id: UUID) -> int:
    result = await session.execute(
        select(func.coalesce(func.sum(OneTimePurchase.audits_remaining), 0))
        .where(
            and_(
                OneTimePurchase.user_id == user_id,
                OneTimePurchase.audits_remaining > 0,
            )
        )
    )
    return int(result.scalar_one())


async def resolve_usage(session: AsyncSession, user_id: UUID,
                        now: Optional[datetime] = None) -> UsageInfo:
    """
    Work out whether ``user_id`` may run another audit.

    Rules are checked in order and the first match wins:

    1. no profile -> plan ``none``
    2. basic/pro whose period end has passed -> ``expired``, whatever the
       stored status says
    3. status expired or past_due -> ``expired``
    4. active or cancelled basic/pro -> current usage row decides; a missing
       row is created on the spot with the plan's limit
    5. unspent one-time credits -> plan ``single``
    6. otherwise plan ``none``

    Args:
        session: Open database session
        user_id: Profile id
        now: Reference time, defaults to the current UTC time

    Returns:
        UsageInfo snapshot

    Example:
        >>> usage = await resolve_usage(session, user.id)
        >>> usage.can_audit
        True
    """
    now = now or utcnow()

    profile = await session.get(Profile, user_id)
    if profile is None:
        return UsageInfo(can_audit=False, plan=Plan.NONE)

    period_end = as_utc(profile.current_period_end)

    if profile.plan.is_subscription and period_end is not None and period_end < now:
        return _expired(period_end)

    if profile.subscription_status in BLOCKED_STATUSES:
        return _expired(period_end)

    if profile.subscription_status in USABLE_STATUSES and profile.plan.is_subscription:
        row = await get_current_usage_row(session, user_id, now)
        if row is not None:
            return UsageInfo(
                can_audit=row.audits_used < row.audits_limit,
                audits_used=row.audits_used,
                audits_limit=row.audits_limit,
                plan=profile.plan,
            )

        limit = plan_limit(profile.plan)
        row = UsageTracking(
            user_id=user_id,
            period_start=as_utc(profile.current_period_start) or now,
            period_end=period_end or now + timedelta(days=DEFAULT_PERIOD_DAYS),
            audits_used=0,
            audits_limit=limit,
        )
        session.add(row)
        await session.flush()
        logger.info(
            "Provisioned usage row",
            extra={"user_id": str(user_id), "plan": profile.plan.value, "audits_limit": limit},
        )
        return UsageInfo(can_audit=True, audits_used=0, audits_limit=limit, plan=profile.plan)

    credits = await get_remaining_credits(session, user_id)
    if credits > 0:
        return UsageInfo(can_audit=True, audits_used=0, audits_limit=credits, plan=Plan.SINGLE)

    return UsageInfo(can_audit=False, plan=Plan.NONE)


async def _consume_oldest_credit(session: AsyncSession, user_id: UUID) -> bool:
    while True:
        result = await session.execute(
            select(OneTimePurchase)
            .where(
                and_(
                    OneTimePurchase.user_id == user_id,
                    OneTimePurchase.audits_remaining > 0,
                )
            )
            .order_by(OneTimePurchase.created_at.asc())
            .limit(1)
        )
        purchase = result.scalars().first()
        if purchase is None:
            return False

        updated = await session.execute(
            update(OneTimePurchase)
            .where(
                and_(
                    OneTimePurchase.id == purchase.id,
                    OneTimePurchase.audits_remaining > 0,
                )
            )
            .values(audits_remaining=OneTimePurchase.audits_remaining - 1)
        )
        if updated.rowcount == 1:
            logger.info(
                "Consumed one-time credit",
                extra={"user_id": str(user_id), "purchase_id": str(purchase.id)},
            )
            return True
        # Another request spent this credit first; try the next-oldest row.
        await session.refresh(purchase)


async def increment_usage(session: AsyncSession, user_id: UUID,
                          now: Optional[datetime] = None) -> bool:
    """
    Meter one completed audit against the user's entitlement.

    The current subscription period is charged when one exists; otherwise
    the oldest one-time purchase with credits left gives one up.

    Returns:
        True if a unit was consumed, False if nothing was left to charge
    """
    now = now or utcnow()

    row = await get_current_usage_row(session, user_id, now)
    if row is not None:
        result = await session.execute(
            update(UsageTracking)
            .where(
                and_(
                    UsageTracking.id == row.id,
                    UsageTracking.audits_used < UsageTracking.audits_limit,
                )
            )
            .values(audits_used=UsageTracking.audits_used + 1)
        )
        if result.rowcount == 1:
            return True
        logger.warning(
            "Usage limit already reached, audit not metered",
            extra={"user_id": str(user_id), "usage_id": str(row.id)},
        )
        return False

    consumed = await _consume_oldest_credit(session, user_id)
    if not consumed:
        logger.warning("No entitlement left to meter audit", extra={"user_id": str(user_id)})
    return consumed


async def start_billing_period(session: AsyncSession, user_id: UUID, plan: Plan,
                               period_start: datetime, period_end: datetime) -> UsageTracking:
    """Open a fresh usage row for a new billing period; the counter starts at zero."""
    row = UsageTracking(
        user_id=user_id,
        period_start=period_start,
        period_end=period_end,
        audits_used=0,
        audits_limit=plan_limit(plan),
    )
    session.add(row)
    await session.flush()
    return row


async def record_one_time_purchase(session: AsyncSession, user_id: UUID,
                                   order_id: Optional[str]) -> OneTimePurchase:
    purchase = OneTimePurchase(
        user_id=user_id,
        ls_order_id=order_id,
        audits_purchased=1,
        audits_remaining=1,
    )
    session.add(purchase)
    await session.flush()
    return purchase
