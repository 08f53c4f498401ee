"""
Audit API Routes

Upload, analysis, retrieval, deletion and PDF export of safety audits.
Every query is scoped to the authenticated owner; an audit belonging to
someone else is indistinguishable from a missing one.

Example usage:
    POST   /api/upload              - Create a pending audit from 1..10 photos
    POST   /api/analyze             - Run the vision analysis for an audit
    GET    /api/audits              - List audits (paged, filterable)
    GET    /api/audits/{id}         - Fetch one audit
    DELETE /api/audits/{id}         - Delete a completed or failed audit
    GET    /api/audits/{id}/pdf     - Download the PDF report (Pro)
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import and_, select

from auth.models import AuthUser
from auth.session import require_auth
from core.analysis import run_analysis
from core.billing import supports_pdf_export
from core.db import get_session
from core.errors import AuditConflictError, AuditNotFoundError, InvalidRequestError, error_response
from core.intake import display_name, normalize_industry, read_uploads
from core.logging import get_logger, log_with_context
from core.models import AuditStatus
from core.models_sql import Audit
from core.ratelimit import get_rate_limit_decorator
from core.render_pdf import ensure_exportable, generate_audit_pdf, report_filename
from core.vision import VisionAnalyzer, get_analyzer
from middleware.quota import check_audit_quota

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["audits"])

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    audit_id: Optional[UUID] = Field(default=None, alias="auditId")


async def get_owned_audit(session: AsyncSession, audit_id: UUID, user_id: UUID) -> Audit:
    """Load an audit owned by ``user_id`` or raise 404."""
    result = await session.execute(
        select(Audit).where(and_(Audit.id == audit_id, Audit.user_id == user_id))
    )
    audit = result.scalars().first()
    if audit is None:
        raise AuditNotFoundError()
    return audit


@router.post("/upload")
@get_rate_limit_decorator()
async def upload_audit(
    request: Request,
    file: Optional[List[UploadFile]] = File(default=None),
    industry: Optional[str] = Form(default=None),
    user: AuthUser = Depends(require_auth),
    session: AsyncSession = Depends(get_session),
) -> JSONResponse:
    """
    Create a pending audit from one or more uploaded photos.

    Entitlement is checked first; then every file is validated by declared
    type and size before the audit row is written. More than one file
    requires the Pro plan.

    Returns:
        ``{"auditId": "<uuid>"}``
    """
    allowed, error, usage = await check_audit_quota(session, user.id, image_count=len(file or []))
    if not allowed:
        return JSONResponse(status_code=403, content=error)

    images = await read_uploads(file)
    industry_type = normalize_industry(industry)

    audit = Audit(
        user_id=user.id,
        file_name=display_name(images),
        image_data=[image.to_data_url() for image in images],
        image_count=len(images),
        industry_type=industry_type,
        status=AuditStatus.PENDING,
        pdf_eligible=supports_pdf_export(usage.plan),
    )
    session.add(audit)
    await session.commit()

    log_with_context(
        logger, "info", "Audit created", request=request,
        audit_id=str(audit.id), image_count=audit.image_count, industry=industry_type,
        plan=usage.plan.value,
    )
    return JSONResponse({"auditId": str(audit.id)})


@router.post("/analyze")
@get_rate_limit_decorator()
async def analyze_audit(
    request: Request,
    body: AnalyzeRequest,
    user: AuthUser = Depends(require_auth),
    session: AsyncSession = Depends(get_session),
    analyzer: VisionAnalyzer = Depends(get_analyzer),
) -> JSONResponse:
    """
    Analyze a pending audit.

    Calling this on a completed audit changes nothing and acknowledges with
    ``{"message": "Already analyzed"}``.
    """
    if body.audit_id is None:
        raise InvalidRequestError("Audit ID required")

    audit = await get_owned_audit(session, body.audit_id, user.id)
    outcome = await run_analysis(session, audit, analyzer)

    if outcome.already_completed:
        return JSONResponse({"message": "Already analyzed"})
    if not outcome.succeeded:
        return error_response("Analysis failed", 500)

    return JSONResponse({"success": True, "result": outcome.result.model_dump(mode="json")})


@router.get("/audits")
async def list_audits(
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    status: Optional[AuditStatus] = Query(default=None),
    industry: Optional[str] = Query(default=None),
    user: AuthUser = Depends(require_auth),
    session: AsyncSession = Depends(get_session),
) -> JSONResponse:
    """List the caller's audits, newest first."""
    conditions = [Audit.user_id == user.id]
    if status is not None:
        conditions.append(Audit.status == status)
    if industry:
        conditions.append(Audit.industry_type == industry)

    total = (await session.execute(
        select(func.count()).select_from(Audit).where(and_(*conditions))
    )).scalar_one()

    result = await session.execute(
        select(Audit)
        .where(and_(*conditions))
        .order_by(Audit.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    audits = [audit.to_summary() for audit in result.scalars().all()]
    return JSONResponse({"audits": audits, "total": total})


@router.get("/audits/{audit_id}")
async def get_audit(
    audit_id: UUID,
    user: AuthUser = Depends(require_auth),
    session: AsyncSession = Depends(get_session),
) -> JSONResponse:
    audit = await get_owned_audit(session, audit_id, user.id)
    return JSONResponse({"audit": audit.to_detail()})


@router.delete("/audits/{audit_id}")
async def delete_audit(
    request: Request,
    audit_id: UUID,
    user: AuthUser = Depends(require_auth),
    session: AsyncSession = Depends(get_session),
) -> JSONResponse:
    """Delete an audit. Only completed or failed audits can be deleted."""
    audit = await get_owned_audit(session, audit_id, user.id)
    if not audit.status.is_terminal:
        raise AuditConflictError("Audit cannot be deleted while it is being processed.")

    await session.delete(audit)
    await session.commit()
    log_with_context(logger, "info", "Audit deleted", request=request, audit_id=str(audit_id))
    return JSONResponse({"success": True})


@router.get("/audits/{audit_id}/pdf")
async def download_audit_pdf(
    audit_id: UUID,
    user: AuthUser = Depends(require_auth),
    session: AsyncSession = Depends(get_session),
) -> Response:
    """Render the PDF report of a completed Pro audit."""
    audit = await get_owned_audit(session, audit_id, user.id)
    result = ensure_exportable(audit)
    pdf_bytes = generate_audit_pdf(audit, result)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{report_filename(audit)}"'},
    )
