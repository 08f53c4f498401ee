"""
Viotraix PDF Audit Report Generator

Lays out a completed ``AuditResult`` as a paginated A4 report with ReportLab's
canvas API. Layout is a greedy top-to-bottom flow: an immutable
``LayoutState`` (page number, cursor, page geometry) is threaded through the
block functions, each of which draws and returns the advanced state. Page
breaks only ever happen in ``ensure_space``.

Report structure:
- Header with brand mark and rule
- File / industry / date lines and a colored score badge
- Summary
- Numbered priority fixes
- Violation cards (severity badge, category tag, details)
- Compliant areas checklist
- Footer on every page with "Page x of y"

Example usage:
    from core.render_pdf import ensure_exportable, generate_audit_pdf

    result = ensure_exportable(audit)
    pdf_bytes = generate_audit_pdf(audit, result)
"""

import re
from dataclasses import dataclass, replace
from datetime import datetime
from io import BytesIO
from typing import List, Optional, Sequence, Tuple

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from core.errors import InvalidRequestError, PermissionDeniedError
from core.logging import get_logger
from core.models import AuditResult, AuditStatus, Severity, ViolationCategory
from core.models_sql import Audit, as_utc, utcnow

logger = get_logger(__name__)

BRAND_NAME = "Viotraix"
REPORT_TITLE = "AI Workplace Safety Audit Report"
FOOTER_TEXT = "Generated by Viotraix - AI Workplace Safety Audits"

PDF_NOT_ELIGIBLE_MESSAGE = "PDF reports are only available for audits created on the Pro plan."
PDF_NOT_READY_MESSAGE = "Audit is not completed yet."

# Geometry (points)
PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 48
FOOTER_HEIGHT = 36
CARD_PADDING = 10
VIOLATION_MIN_HEIGHT = 100

FONT_REGULAR = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
FONT_SIZE_TITLE = 20
FONT_SIZE_HEADER = 14
FONT_SIZE_BODY = 10
FONT_SIZE_SMALL = 8

# Palette
COLOR_BRAND = colors.HexColor("#10B981")
COLOR_TEXT = colors.HexColor("#1F2937")
COLOR_MUTED = colors.HexColor("#6B7280")
COLOR_RULE = colors.HexColor("#D1D5DB")
COLOR_CARD = colors.HexColor("#F9FAFB")
COLOR_SUCCESS = colors.HexColor("#16A34A")
COLOR_WARNING = colors.HexColor("#F59E0B")
COLOR_DANGER = colors.HexColor("#DC2626")

SEVERITY_COLORS = {
    Severity.CRITICAL: colors.HexColor("#991B1B"),
    Severity.HIGH: COLOR_DANGER,
    Severity.MEDIUM: COLOR_WARNING,
    Severity.LOW: colors.HexColor("#2563EB"),
}


@dataclass(frozen=True)
class LayoutState:
    """
    Position of the layout cursor.

    ``y`` is measured from the top edge of the page downwards, which keeps
    the block arithmetic additive; ``to_canvas_y`` converts to ReportLab's
    bottom-up coordinates at draw time.
    """

    page: int = 1
    y: float = MARGIN
    page_width: float = PAGE_WIDTH
    page_height: float = PAGE_HEIGHT
    margin: float = MARGIN

    @property
    def left(self) -> float:
        return self.margin

    @property
    def content_width(self) -> float:
        return self.page_width - 2 * self.margin

    @property
    def bottom(self) -> float:
        """Lowest cursor position content may reach before the footer."""
        return self.page_height - self.margin - FOOTER_HEIGHT

    @property
    def usable_height(self) -> float:
        return self.bottom - self.margin

    @property
    def remaining(self) -> float:
        return self.bottom - self.y

    def advance(self, dy: float) -> "LayoutState":
        return replace(self, y=self.y + dy)

    def next_page(self) -> "LayoutState":
        return replace(self, page=self.page + 1, y=self.margin)

    def to_canvas_y(self, y: Optional[float] = None) -> float:
        return self.page_height - (self.y if y is None else y)


class NumberedCanvas(canvas.Canvas):
    """
    Canvas that draws the footer once the total page count is known.

    Page states are buffered on ``showPage`` and replayed in ``save``.
    """

    def __init__(self, *args, generated_on: str = "", **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_page_states: List[dict] = []
        self._generated_on = generated_on

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total_pages = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self._draw_footer(total_pages)
            super().showPage()
        super().save()

    def _draw_footer(self, total_pages: int) -> None:
        width, height = self._pagesize
        rule_y = FOOTER_HEIGHT
        self.saveState()
        self.setStrokeColor(COLOR_RULE)
        self.setLineWidth(0.5)
        self.line(MARGIN, rule_y, width - MARGIN, rule_y)
        self.setFont(FONT_REGULAR, FONT_SIZE_SMALL)
        self.setFillColor(COLOR_MUTED)
        self.drawString(MARGIN, rule_y - 12, f"{FOOTER_TEXT} | {self._generated_on}")
        self.drawRightString(width - MARGIN, rule_y - 12, f"Page {self._pageNumber} of {total_pages}")
        self.restoreState()


def score_color(score: int) -> colors.Color:
    if score >= 80:
        return COLOR_SUCCESS
    if score >= 50:
        return COLOR_WARNING
    return COLOR_DANGER


def category_label(category: ViolationCategory) -> str:
    return category.label


def wrap_text(text: str, width: float, font: str = FONT_REGULAR, size: float = FONT_SIZE_BODY) -> List[str]:
    """Split ``text`` into lines no wider than ``width``; explicit newlines are kept."""
    lines: List[str] = []
    for paragraph in (text or "").splitlines() or [""]:
        lines.extend(simpleSplit(paragraph, font, size, width) or [""])
    return lines


def line_height(size: float) -> float:
    return size * 1.4


def ensure_space(c: canvas.Canvas, state: LayoutState, needed: float) -> LayoutState:
    """
    Start a new page when fewer than ``needed`` points remain.

    Greedy and non-backtracking: whatever was already drawn stays put.
    """
    if state.y + needed <= state.bottom:
        return state
    c.showPage()
    return state.next_page()


def draw_lines(c: canvas.Canvas, state: LayoutState, lines: Sequence[str], x: float,
               font: str = FONT_REGULAR, size: float = FONT_SIZE_BODY,
               color: colors.Color = COLOR_TEXT) -> LayoutState:
    """Draw pre-wrapped lines, breaking pages between lines as needed."""
    step = line_height(size)
    for line in lines:
        state = ensure_space(c, state, step)
        c.setFont(font, size)
        c.setFillColor(color)
        c.drawString(x, state.to_canvas_y(state.y + size), line)
        state = state.advance(step)
    return state


def draw_paragraph(c: canvas.Canvas, state: LayoutState, text: str, indent: float = 0,
                   font: str = FONT_REGULAR, size: float = FONT_SIZE_BODY,
                   color: colors.Color = COLOR_TEXT) -> LayoutState:
    lines = wrap_text(text, state.content_width - indent, font, size)
    return draw_lines(c, state, lines, state.left + indent, font, size, color)


def draw_section_title(c: canvas.Canvas, state: LayoutState, title: str) -> LayoutState:
    # Keep a title together with at least two body lines.
    state = ensure_space(c, state, 18 + 2 * line_height(FONT_SIZE_BODY))
    state = state.advance(6)
    c.setFont(FONT_BOLD, FONT_SIZE_HEADER)
    c.setFillColor(COLOR_TEXT)
    c.drawString(state.left, state.to_canvas_y(state.y + FONT_SIZE_HEADER), title)
    return state.advance(FONT_SIZE_HEADER + 8)


def draw_header(c: canvas.Canvas, state: LayoutState) -> LayoutState:
    """Brand mark, product name, report title and a rule."""
    top = state.y
    # Shield mark
    shield_x = state.left
    shield_top = state.to_canvas_y(top)
    path = c.beginPath()
    path.moveTo(shield_x + 14, shield_top)
    path.lineTo(shield_x + 28, shield_top - 6)
    path.lineTo(shield_x + 26, shield_top - 22)
    path.lineTo(shield_x + 14, shield_top - 32)
    path.lineTo(shield_x + 2, shield_top - 22)
    path.lineTo(shield_x, shield_top - 6)
    path.close()
    c.setFillColor(COLOR_BRAND)
    c.drawPath(path, stroke=0, fill=1)

    text_x = state.left + 40
    c.setFont(FONT_BOLD, FONT_SIZE_TITLE)
    c.setFillColor(COLOR_TEXT)
    c.drawString(text_x, state.to_canvas_y(top + FONT_SIZE_TITLE), BRAND_NAME)
    c.setFont(FONT_REGULAR, FONT_SIZE_BODY)
    c.setFillColor(COLOR_MUTED)
    c.drawString(text_x, state.to_canvas_y(top + FONT_SIZE_TITLE + 14), REPORT_TITLE)

    rule_y = top + 44
    c.setStrokeColor(COLOR_BRAND)
    c.setLineWidth(1.5)
    c.line(state.left, state.to_canvas_y(rule_y), state.left + state.content_width, state.to_canvas_y(rule_y))
    return replace(state, y=rule_y + 16)


def draw_meta(c: canvas.Canvas, state: LayoutState, audit: Audit, result: AuditResult) -> LayoutState:
    created = as_utc(audit.created_at)
    industry = audit.industry_type or result.industry_detected or "general"
    rows: List[Tuple[str, str]] = [
        ("File", audit.file_name),
        ("Industry", industry.replace("_", " ").title()),
        ("Date", created.strftime("%B %d, %Y").replace(" 0", " ")),
    ]
    if audit.image_count > 1:
        rows.append(("Images", str(audit.image_count)))

    for label, value in rows:
        state = ensure_space(c, state, line_height(FONT_SIZE_BODY))
        baseline = state.to_canvas_y(state.y + FONT_SIZE_BODY)
        c.setFont(FONT_BOLD, FONT_SIZE_BODY)
        c.setFillColor(COLOR_MUTED)
        c.drawString(state.left, baseline, f"{label}:")
        c.setFont(FONT_REGULAR, FONT_SIZE_BODY)
        c.setFillColor(COLOR_TEXT)
        value_lines = wrap_text(value, state.content_width - 60)
        c.drawString(state.left + 60, baseline, value_lines[0])
        state = state.advance(line_height(FONT_SIZE_BODY))
        if len(value_lines) > 1:
            state = draw_lines(c, state, value_lines[1:], state.left + 60)
    return state.advance(6)


def draw_score(c: canvas.Canvas, state: LayoutState, result: AuditResult) -> LayoutState:
    """Circular badge with the overall score and a caption."""
    diameter = 64
    state = ensure_space(c, state, diameter + 12)
    color = score_color(result.overall_score)
    cx = state.left + diameter / 2
    cy = state.to_canvas_y(state.y + diameter / 2)

    c.setFillColor(color)
    c.circle(cx, cy, diameter / 2, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont(FONT_BOLD, 22)
    c.drawCentredString(cx, cy - 8, str(result.overall_score))

    c.setFillColor(COLOR_TEXT)
    c.setFont(FONT_BOLD, FONT_SIZE_HEADER)
    c.drawString(state.left + diameter + 16, cy + 4, "Safety Score")
    c.setFont(FONT_REGULAR, FONT_SIZE_BODY)
    c.setFillColor(COLOR_MUTED)
    c.drawString(
        state.left + diameter + 16, cy - 12,
        f"{result.overall_score} / 100  |  {result.violations_count} violation(s) found",
    )
    return state.advance(diameter + 12)


def draw_summary(c: canvas.Canvas, state: LayoutState, result: AuditResult) -> LayoutState:
    state = draw_section_title(c, state, "Summary")
    return draw_paragraph(c, state, result.summary).advance(6)


def draw_priority_fixes(c: canvas.Canvas, state: LayoutState, fixes: Sequence[str]) -> LayoutState:
    if not fixes:
        return state
    state = draw_section_title(c, state, "Priority Fixes")
    indent = 24
    step = line_height(FONT_SIZE_BODY)
    for number, fix in enumerate(fixes, start=1):
        lines = wrap_text(fix, state.content_width - indent)
        state = ensure_space(c, state, step)
        cy = state.to_canvas_y(state.y + step / 2)
        c.setFillColor(COLOR_BRAND)
        c.circle(state.left + 8, cy + 1, 8, stroke=0, fill=1)
        c.setFillColor(colors.white)
        c.setFont(FONT_BOLD, FONT_SIZE_SMALL)
        c.drawCentredString(state.left + 8, cy - 2, str(number))
        state = draw_lines(c, state, lines, state.left + indent)
        state = state.advance(4)
    return state.advance(4)


def _violation_lines(violation, width: float) -> List[Tuple[str, str, float, colors.Color]]:
    """(text, font, size, color) rows of one violation card below its badge row."""
    rows: List[Tuple[str, str, float, colors.Color]] = []
    for line in wrap_text(violation.title, width, FONT_BOLD, 11):
        rows.append((line, FONT_BOLD, 11, COLOR_TEXT))
    for line in wrap_text(violation.description, width):
        rows.append((line, FONT_REGULAR, FONT_SIZE_BODY, COLOR_TEXT))
    optional = (
        ("Location", violation.location),
        ("Recommendation", violation.recommendation),
        ("Regulatory Ref", violation.regulatory_reference),
    )
    for label, value in optional:
        if value:
            for line in wrap_text(f"{label}: {value}", width, FONT_REGULAR, 9):
                rows.append((line, FONT_REGULAR, 9, COLOR_MUTED))
    return rows


def measure_violation(violation, width: float) -> float:
    badge_row = 20
    body = sum(line_height(size) for _, _, size, _ in _violation_lines(violation, width))
    return CARD_PADDING * 2 + badge_row + body


def draw_violation(c: canvas.Canvas, state: LayoutState, violation) -> LayoutState:
    """
    One violation card.

    The whole card is measured first; when it fits on a page the page break
    happens before it and a background panel is drawn behind it. Cards taller
    than a page fall back to line-by-line flow.
    """
    inner_width = state.content_width - 2 * CARD_PADDING
    height = measure_violation(violation, inner_width)
    fits_on_page = height <= state.usable_height
    state = ensure_space(c, state, min(max(height, VIOLATION_MIN_HEIGHT), state.usable_height))

    if fits_on_page:
        c.setFillColor(COLOR_CARD)
        c.setStrokeColor(COLOR_RULE)
        c.roundRect(state.left, state.to_canvas_y(state.y + height), state.content_width, height, 4,
                    stroke=1, fill=1)

    state = state.advance(CARD_PADDING)
    x = state.left + CARD_PADDING

    # Severity badge and category tag
    badge_text = violation.severity.value.upper()
    badge_width = c.stringWidth(badge_text, FONT_BOLD, FONT_SIZE_SMALL) + 10
    badge_bottom = state.to_canvas_y(state.y + 14)
    c.setFillColor(SEVERITY_COLORS[violation.severity])
    c.roundRect(x, badge_bottom, badge_width, 14, 3, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont(FONT_BOLD, FONT_SIZE_SMALL)
    c.drawString(x + 5, badge_bottom + 4, badge_text)
    c.setFillColor(COLOR_MUTED)
    c.setFont(FONT_REGULAR, FONT_SIZE_SMALL)
    c.drawString(x + badge_width + 8, badge_bottom + 4, category_label(violation.category))
    state = state.advance(20)

    for text, font, size, color in _violation_lines(violation, inner_width):
        state = draw_lines(c, state, [text], x, font, size, color)

    return state.advance(CARD_PADDING + 8)


def draw_violations(c: canvas.Canvas, state: LayoutState, result: AuditResult) -> LayoutState:
    state = draw_section_title(c, state, f"Violations ({result.violations_count})")
    if not result.violations:
        return draw_paragraph(c, state, "No violations were identified.", color=COLOR_MUTED).advance(6)
    for violation in result.violations_by_severity():
        state = draw_violation(c, state, violation)
    return state


def _draw_check(c: canvas.Canvas, x: float, y: float) -> None:
    c.setFillColor(COLOR_SUCCESS)
    c.circle(x, y, 6, stroke=0, fill=1)
    c.setStrokeColor(colors.white)
    c.setLineWidth(1.4)
    c.line(x - 3, y, x - 1, y - 2.5)
    c.line(x - 1, y - 2.5, x + 3, y + 2.5)


def draw_compliant_areas(c: canvas.Canvas, state: LayoutState, areas: Sequence[str]) -> LayoutState:
    if not areas:
        return state
    state = draw_section_title(c, state, "Compliant Areas")
    indent = 20
    step = line_height(FONT_SIZE_BODY)
    for area in areas:
        lines = wrap_text(area, state.content_width - indent)
        state = ensure_space(c, state, step)
        _draw_check(c, state.left + 7, state.to_canvas_y(state.y + step / 2))
        state = draw_lines(c, state, lines, state.left + indent)
        state = state.advance(2)
    return state


def ensure_exportable(audit: Audit) -> AuditResult:
    """
    Check that ``audit`` may be exported and return its parsed result.

    Raises:
        PermissionDeniedError: audit was not created on the Pro plan
        InvalidRequestError: audit has no completed result yet
    """
    if not audit.pdf_eligible:
        raise PermissionDeniedError(PDF_NOT_ELIGIBLE_MESSAGE)
    if audit.status != AuditStatus.COMPLETED or audit.result_json is None:
        raise InvalidRequestError(PDF_NOT_READY_MESSAGE)
    return audit.result


def report_filename(audit: Audit) -> str:
    """``viotraix-audit-<name>.pdf`` with the upload name reduced to safe characters."""
    stem = re.sub(r"\.[A-Za-z0-9]+$", "", audit.file_name or "")
    safe = re.sub(r"[^A-Za-z0-9_-]+", "_", stem).strip("_") or str(audit.id)[:8]
    return f"viotraix-audit-{safe}.pdf"


def generate_audit_pdf(audit: Audit, result: AuditResult, now: Optional[datetime] = None) -> bytes:
    """
    Render the audit report.

    Args:
        audit: Audit row providing file name, industry and date
        result: Validated analysis result
        now: Generation timestamp printed in the footer

    Returns:
        PDF document bytes
    """
    generated = as_utc(now) if now else utcnow()
    buffer = BytesIO()
    c = NumberedCanvas(
        buffer,
        pagesize=A4,
        generated_on=generated.strftime("%B %d, %Y").replace(" 0", " "),
    )
    c.setTitle(f"{BRAND_NAME} Safety Audit - {audit.file_name}")
    c.setAuthor(BRAND_NAME)

    state = LayoutState()
    state = draw_header(c, state)
    state = draw_meta(c, state, audit, result)
    state = draw_score(c, state, result)
    state = draw_summary(c, state, result)
    state = draw_priority_fixes(c, state, result.priority_fixes)
    state = draw_violations(c, state, result)
    state = draw_compliant_areas(c, state, result.compliant_areas)

    c.showPage()
    c.save()

    pdf_bytes = buffer.getvalue()
    logger.info(
        "Rendered audit PDF",
        extra={"audit_id": str(audit.id), "pages": state.page, "bytes": len(pdf_bytes)},
    )
    return pdf_bytes
