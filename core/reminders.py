"""
Daily renewal reminder sweep.

Active basic/pro subscribers whose period ends 5 days or 1 day from now
(measured as whole UTC calendar days) get one reminder each. A reminder of
the same kind sent to the same address within the last 24 hours is not
repeated.
"""

from datetime import datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import and_, select

from core.email import PostmarkSender, reminder_type, send_renewal_reminder
from core.logging import get_logger
from core.models import Plan, SubscriptionStatus
from core.models_sql import EmailNotification, Profile, utcnow

logger = get_logger(__name__)

REMINDER_DAYS: Tuple[int, ...] = (5, 1)
DEDUP_WINDOW = timedelta(hours=24)


def day_window(now: datetime, days_ahead: int) -> Tuple[datetime, datetime]:
    """Start and end of the UTC calendar day ``days_ahead`` days after ``now``."""
    target = (now.astimezone(timezone.utc) + timedelta(days=days_ahead)).date()
    start = datetime.combine(target, time.min, tzinfo=timezone.utc)
    end = datetime.combine(target, time.max, tzinfo=timezone.utc)
    return start, end


async def find_due_profiles(session: AsyncSession, now: datetime, days_ahead: int) -> List[Profile]:
    start, end = day_window(now, days_ahead)
    result = await session.execute(
        select(Profile)
        .where(
            and_(
                Profile.subscription_status == SubscriptionStatus.ACTIVE,
                Profile.plan.in_([Plan.BASIC, Plan.PRO]),
                Profile.current_period_end >= start,
                Profile.current_period_end <= end,
            )
        )
        .order_by(Profile.email)
    )
    return list(result.scalars().all())


async def recently_notified(session: AsyncSession, emails: Iterable[str], kind: str,
                            now: datetime) -> Set[str]:
    emails = list(emails)
    if not emails:
        return set()
    result = await session.execute(
        select(EmailNotification.email)
        .where(
            and_(
                EmailNotification.email.in_(emails),
                EmailNotification.type == kind,
                EmailNotification.sent_at >= now - DEDUP_WINDOW,
            )
        )
    )
    return set(result.scalars().all())


async def send_renewal_reminders(session: AsyncSession, sender: PostmarkSender,
                                 now: Optional[datetime] = None) -> int:
    """
    Run the sweep once.

    Args:
        session: Database session; notification rows are flushed into it
        sender: Email sender
        now: Reference time, defaults to the current UTC time

    Returns:
        Number of reminders dispatched
    """
    now = now or utcnow()
    sent = 0

    for days in REMINDER_DAYS:
        kind = reminder_type(days)
        profiles = await find_due_profiles(session, now, days)
        skip = await recently_notified(session, (p.email for p in profiles), kind, now)

        for profile in profiles:
            if not profile.email or profile.email in skip:
                continue
            skip.add(profile.email)

            delivered = await send_renewal_reminder(
                session, sender, profile.email, profile.full_name, profile.plan.value,
                days, profile.current_period_end, now=now,
            )
            if not delivered:
                logger.warning("Renewal reminder not delivered", extra={"user_id": str(profile.id), "days": days})
            sent += 1

    logger.info(f"Renewal reminder sweep finished: {sent} sent", extra={"reminders_sent": sent})
    return sent
