"""
Domain types shared by the API, the vision analyzer and the report renderer.

The vision model's answer is untrusted input: ``AuditResult`` is the schema it
must satisfy before anything is written to an audit row.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class AuditStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AuditStatus.COMPLETED, AuditStatus.FAILED)


class Severity(str, Enum):
    """Violation severity. ``rank`` gives the total order, critical highest."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class ViolationCategory(str, Enum):
    FIRE_SAFETY = "fire_safety"
    ELECTRICAL = "electrical"
    ERGONOMIC = "ergonomic"
    SLIP_TRIP_FALL = "slip_trip_fall"
    CHEMICAL = "chemical"
    PPE = "ppe"
    STRUCTURAL = "structural"
    HYGIENE = "hygiene"
    EMERGENCY_EXIT = "emergency_exit"
    GENERAL = "general"

    @property
    def label(self) -> str:
        """Human readable name, e.g. ``slip_trip_fall`` -> ``Slip Trip Fall``."""
        return self.value.replace("_", " ").title()


class IndustryType(str, Enum):
    RESTAURANT = "restaurant"
    CONSTRUCTION = "construction"
    WAREHOUSE = "warehouse"
    RETAIL = "retail"
    OFFICE = "office"
    GENERAL = "general"


class Plan(str, Enum):
    NONE = "none"
    SINGLE = "single"
    BASIC = "basic"
    PRO = "pro"
    EXPIRED = "expired"

    @property
    def is_subscription(self) -> bool:
        return self in (Plan.BASIC, Plan.PRO)


class SubscriptionStatus(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"
    EXPIRED = "expired"


class Violation(BaseModel):
    id: int = Field(ge=1)
    category: ViolationCategory
    severity: Severity
    title: str
    description: str
    location: str = ""
    recommendation: str = ""
    regulatory_reference: Optional[str] = None

    @field_validator("regulatory_reference")
    @classmethod
    def _blank_reference_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


class AuditResult(BaseModel):
    """Structured compliance report returned by the vision model."""

    overall_score: int = Field(ge=0, le=100)
    summary: str
    industry_detected: str = IndustryType.GENERAL.value
    violations: List[Violation] = Field(default_factory=list)
    compliant_areas: List[str] = Field(default_factory=list)
    priority_fixes: List[str] = Field(default_factory=list)

    @field_validator("overall_score", mode="before")
    @classmethod
    def _round_fractional_score(cls, value: Any) -> Any:
        if isinstance(value, float) and math.isfinite(value):
            return math.floor(value + 0.5)
        return value

    @model_validator(mode="after")
    def _violation_ids_unique(self) -> "AuditResult":
        ids = [v.id for v in self.violations]
        if len(ids) != len(set(ids)):
            raise ValueError("violation ids must be unique within a result")
        return self

    @property
    def violations_count(self) -> int:
        return len(self.violations)

    def violations_by_severity(self) -> List[Violation]:
        """Violations ordered most severe first, ties kept in model order."""
        return sorted(self.violations, key=lambda v: -v.severity.rank)


class UsageInfo(BaseModel):
    """Entitlement snapshot for one user, serialised in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    can_audit: bool
    audits_used: int = 0
    audits_limit: int = 0
    plan: Plan = Plan.NONE
    expired: bool = False
    expired_at: Optional[datetime] = None
