"""
Builders shared by the Viotraix tests.

Every builder commits, so rows are visible to the application's own
sessions.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from auth.tokens import create_access_token
from core.billing import plan_limit
from core.models import AuditResult, AuditStatus, Plan, SubscriptionStatus
from core.models_sql import Audit, OneTimePurchase, Profile, UsageTracking, utcnow

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

SAMPLE_RESULT: Dict[str, Any] = {
    "overall_score": 72,
    "summary": "The kitchen is mostly clean but two hazards need attention.",
    "industry_detected": "restaurant",
    "violations": [
        {
            "id": 1,
            "category": "fire_safety",
            "severity": "high",
            "title": "Blocked fire extinguisher",
            "description": "Boxes are stacked in front of the extinguisher.",
            "location": "Left wall near the fryer",
            "recommendation": "Keep 36 inches clear around the extinguisher.",
            "regulatory_reference": "OSHA 1910.157(c)(1)",
        },
        {
            "id": 2,
            "category": "slip_trip_fall",
            "severity": "critical",
            "title": "Wet floor without signage",
            "description": "Standing water on the walkway.",
            "location": "Dish station",
            "recommendation": "Mop the area and place a wet floor sign.",
            "regulatory_reference": "",
        },
    ],
    "compliant_areas": ["Hand washing station stocked", "Exit signs lit"],
    "priority_fixes": ["Clear the extinguisher", "Dry the floor"],
}

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def auth_headers(user_id: UUID, email: Optional[str] = "owner@example.com") -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, email=email)}"}


def make_result(violation_count: int = 2, score: int = 72) -> Dict[str, Any]:
    """SAMPLE_RESULT with ``violation_count`` generated violations."""
    severities = ["critical", "high", "medium", "low"]
    categories = ["fire_safety", "electrical", "ppe", "chemical", "hygiene"]
    result = dict(SAMPLE_RESULT, overall_score=score)
    result["violations"] = [
        {
            "id": i + 1,
            "category": categories[i % len(categories)],
            "severity": severities[i % len(severities)],
            "title": f"Violation number {i + 1}",
            "description": "Detailed description of the hazard observed in the photo. " * 3,
            "location": "Aisle 4",
            "recommendation": "Correct the hazard before the next shift.",
            "regulatory_reference": "OSHA 1910.22",
        }
        for i in range(violation_count)
    ]
    return result


async def create_profile(
    session: AsyncSession,
    user_id: Optional[UUID] = None,
    email: Optional[str] = None,
    plan: Plan = Plan.NONE,
    status: SubscriptionStatus = SubscriptionStatus.NONE,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
    full_name: Optional[str] = None,
) -> Profile:
    profile = Profile(
        id=user_id or uuid4(),
        email=email or f"user-{uuid4().hex[:8]}@example.com",
        full_name=full_name,
        plan=plan,
        subscription_status=status,
        current_period_start=period_start,
        current_period_end=period_end,
    )
    session.add(profile)
    await session.commit()
    return profile


async def create_usage(
    session: AsyncSession,
    user_id: UUID,
    used: int,
    limit: int,
    period_start: datetime,
    period_end: datetime,
    created_at: Optional[datetime] = None,
) -> UsageTracking:
    row = UsageTracking(
        user_id=user_id,
        period_start=period_start,
        period_end=period_end,
        audits_used=used,
        audits_limit=limit,
        created_at=created_at or period_start,
    )
    session.add(row)
    await session.commit()
    return row


async def create_subscriber(
    session: AsyncSession,
    plan: Plan = Plan.BASIC,
    used: int = 0,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    now: Optional[datetime] = None,
    email: Optional[str] = None,
) -> Profile:
    """Subscriber in the middle of a 30-day period with a usage row."""
    now = now or utcnow()
    start, end = now - timedelta(days=10), now + timedelta(days=20)
    profile = await create_profile(
        session, plan=plan, status=status, period_start=start, period_end=end, email=email,
    )
    await create_usage(session, profile.id, used, plan_limit(plan), start, end)
    return profile


async def create_purchase(
    session: AsyncSession,
    user_id: UUID,
    remaining: int = 1,
    created_at: Optional[datetime] = None,
    order_id: Optional[str] = None,
) -> OneTimePurchase:
    purchase = OneTimePurchase(
        user_id=user_id,
        ls_order_id=order_id,
        audits_purchased=max(remaining, 1),
        audits_remaining=remaining,
        created_at=created_at or utcnow(),
    )
    session.add(purchase)
    await session.commit()
    return purchase


async def create_audit(
    session: AsyncSession,
    user_id: UUID,
    status: AuditStatus = AuditStatus.PENDING,
    result: Optional[Dict[str, Any]] = None,
    pdf_eligible: bool = False,
    image_data: Optional[List[str]] = None,
    industry_type: str = "general",
    file_name: str = "kitchen.jpg",
    created_at: Optional[datetime] = None,
) -> Audit:
    if image_data is None and status in (AuditStatus.PENDING, AuditStatus.PROCESSING):
        image_data = ["data:image/png;base64,iVBORw0KGgo="]
    audit = Audit(
        user_id=user_id,
        file_name=file_name,
        image_data=image_data,
        image_count=len(image_data) if image_data else 1,
        industry_type=industry_type,
        status=status,
        pdf_eligible=pdf_eligible,
        result_json=result,
        overall_score=result["overall_score"] if result else None,
        violations_count=len(result["violations"]) if result else 0,
        created_at=created_at or utcnow(),
    )
    session.add(audit)
    await session.commit()
    return audit


async def fetch(session_maker, model: Any, key: Any):
    """Load ``model`` by primary key in a fresh session."""
    async with session_maker() as fresh:
        return await fresh.get(model, key)


class FakeAnalyzer:
    """Stands in for ``VisionAnalyzer``; records calls and returns a canned result."""

    def __init__(self, result: Optional[AuditResult] = None, error: Optional[Exception] = None):
        self.result = result or AuditResult.model_validate(SAMPLE_RESULT)
        self.error = error
        self.calls: List[Tuple[List[str], Optional[str]]] = []

    async def analyze(self, images: Sequence[str], industry: Optional[str] = None) -> AuditResult:
        self.calls.append((list(images), industry))
        if self.error is not None:
            raise self.error
        return self.result


class RecordingSender:
    """Email sender that keeps messages in memory."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.sent: List[Dict[str, str]] = []

    async def send(self, to_email: str, subject: str, html_body: str,
                   text_body: Optional[str] = None) -> bool:
        self.sent.append({"to": to_email, "subject": subject, "html": html_body})
        return self.accept


class FakePaymentClient:
    """Payment client whose checkout returns ``url`` or raises ``error``."""

    def __init__(self, url: str = "https://viotraix.lemonsqueezy.com/checkout/test",
                 error: Optional[Exception] = None):
        self.url = url
        self.error = error
        self.calls: List[Tuple[str, str, Optional[str]]] = []

    async def create_checkout(self, tier: str, user_id: str, email: Optional[str]) -> str:
        self.calls.append((tier, user_id, email))
        if self.error is not None:
            raise self.error
        return self.url


def failing_commit_override(session_maker):
    """``get_session`` override whose commit raises, as a lost database connection would."""

    async def override():
        async with session_maker() as session:
            async def fail_commit():
                raise RuntimeError("commit failed")

            session.commit = fail_commit
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    return override
