"""
SQLModel tables for Viotraix.

profiles, audits, usage_tracking, one_time_purchases and email_notifications.
All timestamps are stored as UTC; ``as_utc`` restores tzinfo on drivers that
hand back naive values.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from core.models import AuditResult, AuditStatus, Plan, SubscriptionStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the store."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    # Same id as the auth provider's user
    id: UUID = Field(primary_key=True)
    email: str = Field(index=True)
    full_name: Optional[str] = None
    plan: Plan = Field(default=Plan.NONE)
    subscription_status: SubscriptionStatus = Field(default=SubscriptionStatus.NONE, index=True)
    current_period_start: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    current_period_end: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True), index=True)
    ls_customer_id: Optional[str] = None
    ls_subscription_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))


class Audit(SQLModel, table=True):
    __tablename__ = "audits"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(index=True)
    file_name: str
    # Inline data URLs; cleared on every terminal transition
    image_data: Optional[List[str]] = Field(default=None, sa_column=Column(JSON(none_as_null=True), nullable=True))
    image_count: int = Field(default=1)
    industry_type: Optional[str] = Field(default="general", index=True)
    status: AuditStatus = Field(default=AuditStatus.PENDING, index=True)
    overall_score: Optional[int] = None
    violations_count: int = Field(default=0)
    result_json: Optional[dict] = Field(default=None, sa_column=Column(JSON(none_as_null=True), nullable=True))
    processing_error: Optional[str] = None
    pdf_eligible: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)
    updated_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    @property
    def result(self) -> Optional[AuditResult]:
        if self.result_json is None:
            return None
        return AuditResult.model_validate(self.result_json)

    def to_summary(self) -> dict[str, Any]:
        """Listing representation; never includes image data or the full result."""
        return {
            "id": str(self.id),
            "file_name": self.file_name,
            "image_count": self.image_count,
            "industry_type": self.industry_type,
            "status": self.status.value,
            "overall_score": self.overall_score,
            "violations_count": self.violations_count,
            "pdf_eligible": self.pdf_eligible,
            "created_at": as_utc(self.created_at).isoformat(),
        }

    def to_detail(self) -> dict[str, Any]:
        data = self.to_summary()
        data.update({
            "result_json": self.result_json,
            "processing_error": self.processing_error,
            "updated_at": as_utc(self.updated_at).isoformat() if self.updated_at else None,
        })
        return data


class UsageTracking(SQLModel, table=True):
    __tablename__ = "usage_tracking"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(index=True)
    period_start: datetime = Field(sa_type=DateTime(timezone=True))
    period_end: datetime = Field(sa_type=DateTime(timezone=True), index=True)
    audits_used: int = Field(default=0)
    audits_limit: int
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class OneTimePurchase(SQLModel, table=True):
    __tablename__ = "one_time_purchases"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(index=True)
    ls_order_id: Optional[str] = None
    audits_purchased: int = Field(default=1)
    audits_remaining: int = Field(default=1)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)


class EmailNotification(SQLModel, table=True):
    __tablename__ = "email_notifications"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(index=True)
    subject: str
    html_body: str
    type: str = Field(index=True)
    sent_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)
