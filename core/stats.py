"""
Dashboard statistics over a user's audits.

``compute_stats`` is a pure function of the audit rows and a reference time,
so it can be tested without a database.
"""

import math
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from core.models import AuditStatus, Severity
from core.models_sql import Audit, as_utc, utcnow

SCORE_TREND_LENGTH = 10
MONTHS_SHOWN = 6


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _violations(audit: Audit) -> List[Dict[str, Any]]:
    result = audit.result_json or {}
    violations = result.get("violations") if isinstance(result, dict) else None
    return violations if isinstance(violations, list) else []


def _month_start(year: int, month: int) -> datetime:
    return datetime(year, month, 1, tzinfo=timezone.utc)


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def monthly_counts(audits: Sequence[Audit], now: datetime, months: int = MONTHS_SHOWN) -> List[Dict[str, Any]]:
    """Audit counts for the last ``months`` calendar months (UTC), oldest first, labelled like ``Jan 25``."""
    created = [as_utc(a.created_at) for a in audits]
    buckets = []
    for offset in range(months - 1, -1, -1):
        year, month = _shift_month(now.year, now.month, -offset)
        start = _month_start(year, month)
        end = _month_start(*_shift_month(year, month, 1))
        buckets.append({
            "month": start.strftime("%b %y"),
            "count": sum(1 for c in created if start <= c < end),
        })
    return buckets


def compute_stats(audits: Sequence[Audit], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Aggregate a user's audits for the dashboard.

    Args:
        audits: All audits of one user, any order
        now: Reference time for the monthly buckets

    Returns:
        JSON-ready dictionary with camelCase keys
    """
    now = as_utc(now) if now else utcnow()
    ordered = sorted(audits, key=lambda a: as_utc(a.created_at))
    completed = [a for a in ordered if a.status == AuditStatus.COMPLETED]

    total_violations = sum(a.violations_count or 0 for a in completed)
    avg_score = (
        _round_half_up(sum(a.overall_score or 0 for a in completed) / len(completed))
        if completed else 0
    )

    categories: Counter = Counter()
    severities: Dict[str, int] = {s.value: 0 for s in Severity}
    for audit in completed:
        for violation in _violations(audit):
            category = violation.get("category")
            if category:
                categories[category] += 1
            severity = violation.get("severity")
            if severity in severities:
                severities[severity] += 1

    industries: Counter = Counter(a.industry_type or "general" for a in ordered)

    score_trend = []
    for audit in completed[-SCORE_TREND_LENGTH:]:
        created = as_utc(audit.created_at)
        score_trend.append({
            "date": f"{created:%b} {created.day}",
            "score": audit.overall_score or 0,
        })

    return {
        "totalAudits": len(ordered),
        "completedCount": len(completed),
        "totalViolations": total_violations,
        "avgScore": avg_score,
        "criticalCount": severities[Severity.CRITICAL.value],
        "scoreTrend": score_trend,
        "violationsByCategory": [
            {"category": c, "count": n} for c, n in sorted(categories.items(), key=lambda kv: -kv[1])
        ],
        "severityBreakdown": [{"severity": s, "count": n} for s, n in severities.items()],
        "industryBreakdown": [
            {"industry": i, "count": n} for i, n in sorted(industries.items(), key=lambda kv: -kv[1])
        ],
        "monthlyAudits": monthly_counts(ordered, now),
    }
