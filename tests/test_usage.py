"""
Tests for usage resolution and metering

Covers the ordered entitlement rules of ``resolve_usage``, atomic metering
in ``increment_usage`` and the upload quota gate.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlmodel import select

from core.models import Plan, SubscriptionStatus
from core.models_sql import OneTimePurchase, UsageTracking, as_utc
from middleware.quota import (
    BATCH_REQUIRES_PRO_MESSAGE,
    LIMIT_REACHED_MESSAGE,
    NO_PLAN_MESSAGE,
    check_audit_quota,
)
from quota.usage import (
    get_remaining_credits,
    increment_usage,
    record_one_time_purchase,
    resolve_usage,
    start_billing_period,
)
from tests.helpers import NOW, create_profile, create_purchase, create_subscriber, create_usage


class TestResolveUsage:
    """Rule order of the entitlement resolver."""

    @pytest.mark.asyncio
    async def test_no_profile_has_no_plan(self, session):
        usage = await resolve_usage(session, uuid4(), now=NOW)

        assert usage.can_audit is False
        assert usage.plan == Plan.NONE
        assert usage.expired is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.PAST_DUE,
    ])
    async def test_past_period_end_is_expired_whatever_the_status(self, session, status):
        period_end = NOW - timedelta(days=1)
        profile = await create_profile(
            session, plan=Plan.PRO, status=status,
            period_start=NOW - timedelta(days=31), period_end=period_end,
        )
        await create_usage(session, profile.id, 3, 200, NOW - timedelta(days=31), period_end)

        usage = await resolve_usage(session, profile.id, now=NOW)

        assert usage.can_audit is False
        assert usage.plan == Plan.EXPIRED
        assert usage.expired is True
        assert as_utc(usage.expired_at) == period_end

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [SubscriptionStatus.EXPIRED, SubscriptionStatus.PAST_DUE])
    async def test_blocked_status_inside_period_is_expired(self, session, status):
        profile = await create_profile(
            session, plan=Plan.BASIC, status=status,
            period_start=NOW - timedelta(days=5), period_end=NOW + timedelta(days=25),
        )

        usage = await resolve_usage(session, profile.id, now=NOW)

        assert usage.can_audit is False
        assert usage.plan == Plan.EXPIRED
        assert usage.expired is True

    @pytest.mark.asyncio
    async def test_cancelled_subscription_usable_until_period_end(self, session):
        profile = await create_subscriber(
            session, plan=Plan.BASIC, used=10, status=SubscriptionStatus.CANCELLED, now=NOW,
        )

        usage = await resolve_usage(session, profile.id, now=NOW)

        assert usage.can_audit is True
        assert usage.plan == Plan.BASIC
        assert usage.audits_used == 10
        assert usage.audits_limit == 50

    @pytest.mark.asyncio
    async def test_basic_subscriber_last_audit_then_blocked(self, session):
        profile = await create_subscriber(session, plan=Plan.BASIC, used=49, now=NOW)

        before = await resolve_usage(session, profile.id, now=NOW)
        assert before.can_audit is True
        assert before.audits_used == 49

        assert await increment_usage(session, profile.id, now=NOW) is True
        await session.commit()

        after = await resolve_usage(session, profile.id, now=NOW)
        assert after.can_audit is False
        assert after.audits_used == 50
        assert after.audits_limit == 50
        assert after.plan == Plan.BASIC

    @pytest.mark.asyncio
    async def test_missing_usage_row_is_provisioned(self, session):
        start, end = NOW - timedelta(days=2), NOW + timedelta(days=28)
        profile = await create_profile(
            session, plan=Plan.PRO, status=SubscriptionStatus.ACTIVE,
            period_start=start, period_end=end,
        )

        usage = await resolve_usage(session, profile.id, now=NOW)
        await session.commit()

        assert usage.can_audit is True
        assert usage.audits_used == 0
        assert usage.audits_limit == 200

        rows = (await session.execute(
            select(UsageTracking).where(UsageTracking.user_id == profile.id)
        )).scalars().all()
        assert len(rows) == 1
        assert as_utc(rows[0].period_start) == start
        assert as_utc(rows[0].period_end) == end
        assert rows[0].audits_limit == 200

    @pytest.mark.asyncio
    async def test_null_period_end_is_not_expired(self, session):
        profile = await create_profile(session, plan=Plan.BASIC, status=SubscriptionStatus.ACTIVE)

        usage = await resolve_usage(session, profile.id, now=NOW)

        assert usage.can_audit is True
        assert usage.expired is False
        assert usage.audits_limit == 50

    @pytest.mark.asyncio
    async def test_newest_current_row_wins(self, session):
        profile = await create_subscriber(session, plan=Plan.BASIC, used=50, now=NOW)
        # Renewal opened a fresh period
        await create_usage(
            session, profile.id, 0, 50, NOW - timedelta(hours=1), NOW + timedelta(days=30),
            created_at=NOW - timedelta(hours=1),
        )

        usage = await resolve_usage(session, profile.id, now=NOW)

        assert usage.can_audit is True
        assert usage.audits_used == 0

    @pytest.mark.asyncio
    async def test_one_time_credits_give_single_plan(self, session):
        profile = await create_profile(session)
        await create_purchase(session, profile.id, remaining=1)
        await create_purchase(session, profile.id, remaining=2)

        usage = await resolve_usage(session, profile.id, now=NOW)

        assert usage.can_audit is True
        assert usage.plan == Plan.SINGLE
        assert usage.audits_used == 0
        assert usage.audits_limit == 3

    @pytest.mark.asyncio
    async def test_spent_credits_leave_no_plan(self, session):
        profile = await create_profile(session)
        await create_purchase(session, profile.id, remaining=0)

        usage = await resolve_usage(session, profile.id, now=NOW)

        assert usage.can_audit is False
        assert usage.plan == Plan.NONE

    @pytest.mark.asyncio
    async def test_subscription_takes_precedence_over_credits(self, session):
        profile = await create_subscriber(session, plan=Plan.PRO, used=5, now=NOW)
        await create_purchase(session, profile.id, remaining=1)

        usage = await resolve_usage(session, profile.id, now=NOW)

        assert usage.plan == Plan.PRO
        assert usage.audits_used == 5


class TestIncrementUsage:
    """Metering of completed audits."""

    @pytest.mark.asyncio
    async def test_full_period_is_not_incremented(self, session):
        profile = await create_subscriber(session, plan=Plan.BASIC, used=50, now=NOW)

        assert await increment_usage(session, profile.id, now=NOW) is False
        await session.commit()

        row = (await session.execute(
            select(UsageTracking).where(UsageTracking.user_id == profile.id)
        )).scalars().one()
        await session.refresh(row)
        assert row.audits_used == 50

    @pytest.mark.asyncio
    async def test_credits_consumed_oldest_first(self, session):
        profile = await create_profile(session)
        older = await create_purchase(session, profile.id, remaining=1, created_at=NOW - timedelta(days=3))
        newer = await create_purchase(session, profile.id, remaining=1, created_at=NOW - timedelta(days=1))

        assert await increment_usage(session, profile.id, now=NOW) is True
        await session.commit()
        await session.refresh(older)
        await session.refresh(newer)

        assert older.audits_remaining == 0
        assert newer.audits_remaining == 1
        assert await get_remaining_credits(session, profile.id) == 1

    @pytest.mark.asyncio
    async def test_exhausted_credits_skipped(self, session):
        profile = await create_profile(session)
        spent = await create_purchase(session, profile.id, remaining=0, created_at=NOW - timedelta(days=5))
        fresh = await create_purchase(session, profile.id, remaining=1, created_at=NOW - timedelta(days=1))

        assert await increment_usage(session, profile.id, now=NOW) is True
        await session.commit()
        await session.refresh(spent)
        await session.refresh(fresh)

        assert spent.audits_remaining == 0
        assert fresh.audits_remaining == 0

    @pytest.mark.asyncio
    async def test_period_charged_before_credits(self, session):
        profile = await create_subscriber(session, plan=Plan.BASIC, used=3, now=NOW)
        purchase = await create_purchase(session, profile.id, remaining=1)

        assert await increment_usage(session, profile.id, now=NOW) is True
        await session.commit()
        await session.refresh(purchase)

        usage = await resolve_usage(session, profile.id, now=NOW)
        assert usage.audits_used == 4
        assert purchase.audits_remaining == 1

    @pytest.mark.asyncio
    async def test_nothing_to_charge(self, session):
        profile = await create_profile(session)

        assert await increment_usage(session, profile.id, now=NOW) is False


class TestBillingRows:

    @pytest.mark.asyncio
    async def test_start_billing_period_resets_counter(self, session):
        user_id = uuid4()
        row = await start_billing_period(
            session, user_id, Plan.PRO, NOW, NOW + timedelta(days=30),
        )
        await session.commit()

        assert row.audits_used == 0
        assert row.audits_limit == 200

    @pytest.mark.asyncio
    async def test_record_one_time_purchase(self, session):
        user_id = uuid4()
        await record_one_time_purchase(session, user_id, "order_123")
        await session.commit()

        purchase = (await session.execute(
            select(OneTimePurchase).where(OneTimePurchase.user_id == user_id)
        )).scalars().one()
        assert purchase.ls_order_id == "order_123"
        assert purchase.audits_purchased == 1
        assert purchase.audits_remaining == 1


class TestCheckAuditQuota:
    """Upload gate built on the resolver."""

    @pytest.mark.asyncio
    async def test_no_plan_refused(self, session):
        profile = await create_profile(session)

        allowed, error, usage = await check_audit_quota(session, profile.id)

        assert allowed is False
        assert error["error"] == NO_PLAN_MESSAGE
        assert error["usage"]["canAudit"] is False
        assert error["usage"]["plan"] == "none"

    @pytest.mark.asyncio
    async def test_limit_reached_refused(self, session):
        profile = await create_subscriber(session, plan=Plan.BASIC, used=50)

        allowed, error, usage = await check_audit_quota(session, profile.id)

        assert allowed is False
        assert error["error"] == LIMIT_REACHED_MESSAGE
        assert error["usage"]["auditsUsed"] == 50

    @pytest.mark.asyncio
    async def test_batch_requires_pro(self, session):
        profile = await create_subscriber(session, plan=Plan.BASIC)

        allowed, error, usage = await check_audit_quota(session, profile.id, image_count=3)

        assert allowed is False
        assert error == {"error": BATCH_REQUIRES_PRO_MESSAGE}
        assert usage.can_audit is True

    @pytest.mark.asyncio
    async def test_pro_batch_allowed(self, session):
        profile = await create_subscriber(session, plan=Plan.PRO)

        allowed, error, usage = await check_audit_quota(session, profile.id, image_count=5)

        assert allowed is True
        assert error is None
        assert usage.plan == Plan.PRO
