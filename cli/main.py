"""
Viotraix CLI Main Module

Operational commands for Viotraix using Typer: schema creation, the renewal
reminder sweep, PDF export and development tokens.
"""

import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional
from uuid import UUID

import typer

from auth.tokens import create_access_token
from core.db import close_db, get_db_session, init_db
from core.email import PostmarkSender
from core.errors import ViotraixError
from core.logging import setup_logging
from core.models_sql import Audit
from core.reminders import send_renewal_reminders
from core.render_pdf import ensure_exportable, generate_audit_pdf, report_filename

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="viotraix",
    help="Viotraix - AI workplace safety audits",
    add_completion=False,
)


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level"),
    log_format: str = typer.Option("text", "--log-format", help="json or text"),
) -> None:
    setup_logging(level=log_level, format_type=log_format)


async def _run_init_db() -> None:
    try:
        await init_db()
    finally:
        await close_db()


async def _run_reminders() -> int:
    try:
        async with get_db_session() as session:
            return await send_renewal_reminders(session, PostmarkSender())
    finally:
        await close_db()


async def _load_audit(audit_id: UUID) -> Optional[Audit]:
    try:
        async with get_db_session() as session:
            return await session.get(Audit, audit_id)
    finally:
        await close_db()


@app.command("init-db")
def init_db_command() -> None:
    """Create all tables in DATABASE_URL."""
    try:
        asyncio.run(_run_init_db())
    except RuntimeError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo("Database tables created")


@app.command()
def reminders() -> None:
    """
    Send 5-day and 1-day renewal reminders once.

    Same sweep as GET /api/cron/renewal-reminders, for running from a
    scheduler that has shell access instead of HTTP.
    """
    try:
        sent = asyncio.run(_run_reminders())
    except Exception as e:
        logger.error(f"Reminder sweep failed: {e}", exc_info=True)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Reminders sent: {sent}")


@app.command("export-pdf")
def export_pdf(
    audit_id: UUID = typer.Argument(..., help="Audit identifier"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output PDF path"),
) -> None:
    """Render the PDF report of a completed Pro audit to a file."""
    audit = asyncio.run(_load_audit(audit_id))
    if audit is None:
        typer.echo(f"Audit not found: {audit_id}", err=True)
        raise typer.Exit(1)

    try:
        result = ensure_exportable(audit)
    except ViotraixError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(1)

    output = output or Path(report_filename(audit))
    output.write_bytes(generate_audit_pdf(audit, result))
    typer.echo(f"Report written to {output}")


@app.command("issue-token")
def issue_token(
    user_id: UUID = typer.Argument(..., help="User identifier (profiles.id)"),
    email: Optional[str] = typer.Option(None, "--email", help="Email claim"),
    expires_in: int = typer.Option(3600, "--expires-in", help="Lifetime in seconds"),
) -> None:
    """Sign a development access token with SUPABASE_JWT_SECRET."""
    try:
        token = create_access_token(user_id, email=email, expires_in=timedelta(seconds=expires_in))
    except RuntimeError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(token)


if __name__ == "__main__":
    sys.exit(app())
