"""
Audit analysis state machine.

pending -> processing -> completed | failed

``processing`` is committed before the vision call so pollers see the
in-flight state immediately. Both terminal transitions clear the stored
images. Only a successful analysis is metered against the user's plan.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import AuditConflictError
from core.logging import get_logger
from core.models import AuditResult, AuditStatus
from core.models_sql import Audit, utcnow
from core.vision import VisionAnalyzer
from quota.usage import increment_usage

logger = get_logger(__name__)

ANALYSIS_FAILED_MESSAGE = "Something went wrong while analyzing your image. Please try again."


@dataclass(frozen=True)
class AnalysisOutcome:
    status: AuditStatus
    result: Optional[AuditResult] = None
    already_completed: bool = False
    metered: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == AuditStatus.COMPLETED


def _guard_startable(audit: Audit) -> None:
    if audit.status == AuditStatus.PROCESSING:
        raise AuditConflictError("Audit is already being analyzed")
    if audit.status == AuditStatus.FAILED:
        raise AuditConflictError("Audit analysis failed. Please upload the image again.")


async def _mark_failed(session: AsyncSession, audit: Audit, now: Optional[datetime]) -> None:
    # Discards a half-written completion and its metering
    await session.rollback()
    await session.refresh(audit)
    audit.status = AuditStatus.FAILED
    audit.processing_error = ANALYSIS_FAILED_MESSAGE
    audit.image_data = None
    audit.updated_at = now or utcnow()
    session.add(audit)
    await session.commit()


async def run_analysis(session: AsyncSession, audit: Audit, analyzer: VisionAnalyzer,
                       now: Optional[datetime] = None) -> AnalysisOutcome:
    """
    Analyze a pending audit and persist the outcome.

    Re-running on a completed audit is a no-op. Audits that are in flight or
    already failed raise ``AuditConflictError``; a failed audit has to be
    uploaded again.

    Args:
        session: Database session the audit was loaded with
        audit: Audit row owned by the caller
        analyzer: Vision client
        now: Timestamp used for ``updated_at`` and metering

    Returns:
        AnalysisOutcome describing the terminal state
    """
    if audit.status == AuditStatus.COMPLETED:
        return AnalysisOutcome(status=AuditStatus.COMPLETED, result=audit.result, already_completed=True)

    _guard_startable(audit)

    audit.status = AuditStatus.PROCESSING
    audit.updated_at = now or utcnow()
    session.add(audit)
    await session.commit()

    log_extra = {"audit_id": str(audit.id), "user_id": str(audit.user_id), "image_count": audit.image_count}
    logger.info("Audit analysis started", extra=log_extra)

    try:
        result = await analyzer.analyze(audit.image_data or [], industry=audit.industry_type)

        audit.status = AuditStatus.COMPLETED
        audit.overall_score = result.overall_score
        audit.violations_count = result.violations_count
        audit.result_json = result.model_dump(mode="json")
        audit.processing_error = None
        audit.image_data = None
        audit.updated_at = now or utcnow()
        session.add(audit)

        metered = await increment_usage(session, audit.user_id, now)
        await session.commit()
    except Exception:
        logger.exception("Audit analysis failed", extra=log_extra)
        await _mark_failed(session, audit, now)
        return AnalysisOutcome(status=AuditStatus.FAILED)

    logger.info(
        "Audit analysis completed",
        extra={**log_extra, "overall_score": result.overall_score,
               "violations": result.violations_count, "metered": metered},
    )
    return AnalysisOutcome(status=AuditStatus.COMPLETED, result=result, metered=metered)
