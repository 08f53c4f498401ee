"""
Transactional email for Viotraix.

Messages go out through the Postmark HTTPS API. Every renewal reminder is
first recorded in ``email_notifications`` so the daily sweep can avoid
sending duplicates.
"""

import os
from datetime import datetime
from html import escape
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging import get_logger
from core.models_sql import EmailNotification, as_utc, utcnow

logger = get_logger(__name__)

APP_NAME = "Viotraix"
POSTMARK_URL = "https://api.postmarkapp.com/email"
SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL", "support@viotraix.com")


class PostmarkSender:
    """
    Send email through Postmark.

    Without POSTMARK_API_TOKEN the message is only logged, so development and
    preview deployments never mail real customers.
    """

    def __init__(self, token: Optional[str] = None, from_email: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token = token if token is not None else os.getenv("POSTMARK_API_TOKEN")
        self.from_email = from_email or os.getenv("EMAIL_FROM", f"{APP_NAME} <noreply@viotraix.com>")
        self._transport = transport

    async def send(self, to_email: str, subject: str, html_body: str,
                   text_body: Optional[str] = None) -> bool:
        if not self.token:
            logger.info(f"Email provider not configured, logging only: {subject}", extra={"to": to_email})
            return True

        payload = {
            "From": self.from_email,
            "To": to_email,
            "Subject": subject,
            "HtmlBody": html_body,
            "TextBody": text_body or subject,
            "MessageStream": os.getenv("POSTMARK_STREAM", "outbound"),
        }
        headers = {
            "Accept": "application/json",
            "X-Postmark-Server-Token": self.token,
        }

        try:
            async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
                response = await client.post(POSTMARK_URL, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error(f"Postmark request failed: {exc}", extra={"to": to_email})
            return False

        if response.status_code == 200:
            logger.info(f"Postmark email sent to {to_email}: {subject}")
            return True
        logger.error(f"Postmark email failed ({response.status_code}): {response.text[:300]}")
        return False


def reminder_type(days_remaining: int) -> str:
    return f"renewal_reminder_{days_remaining}d"


def renewal_subject(days_remaining: int) -> str:
    if days_remaining <= 1:
        return f"{APP_NAME}: Your subscription expires tomorrow"
    return f"{APP_NAME}: Your subscription expires in {days_remaining} days"


def build_renewal_email_html(user_name: Optional[str], plan: str, days_remaining: int,
                             period_end: datetime, app_url: Optional[str] = None) -> str:
    app_url = (app_url or os.getenv("APP_URL", "http://localhost:3000")).rstrip("/")
    end_date = as_utc(period_end).strftime("%B %d, %Y").replace(" 0", " ")
    urgency = "expires tomorrow" if days_remaining <= 1 else f"expires in {days_remaining} days"
    greeting = escape(user_name) if user_name else "there"

    return f"""
<div style="font-family: 'Segoe UI', Tahoma, sans-serif; max-width: 600px; margin: 0 auto; padding: 32px 24px;">
  <h1 style="color: #10b981; font-size: 26px; margin: 0;">{APP_NAME}</h1>
  <p style="color: #5e8a78; font-size: 13px; margin-top: 4px;">AI-Powered Workplace Safety Inspector</p>
  <h2 style="font-size: 20px;">Your subscription {urgency}</h2>
  <p>Hi {greeting},</p>
  <p>Your <strong>{escape(plan.capitalize())}</strong> plan is set to renew on <strong>{end_date}</strong>.</p>
  <p>Keep your payment method up to date to avoid losing access to new safety audits.</p>
  <p><a href="{app_url}/billing" style="background: #10b981; color: #fff; padding: 10px 28px; border-radius: 8px; text-decoration: none;">Manage Subscription</a></p>
  <p style="color: #5e8a78; font-size: 12px;">Questions? Contact us at <a href="mailto:{SUPPORT_EMAIL}">{SUPPORT_EMAIL}</a></p>
</div>
"""


async def send_renewal_reminder(session: AsyncSession, sender: PostmarkSender, email: str,
                                user_name: Optional[str], plan: str, days_remaining: int,
                                period_end: datetime, now: Optional[datetime] = None) -> bool:
    """
    Record and send one renewal reminder.

    The notification row is flushed before the provider is called.

    Returns:
        Whether the provider accepted the message
    """
    subject = renewal_subject(days_remaining)
    html_body = build_renewal_email_html(user_name, plan, days_remaining, period_end)

    session.add(EmailNotification(
        email=email,
        subject=subject,
        html_body=html_body,
        type=reminder_type(days_remaining),
        sent_at=now or utcnow(),
    ))
    await session.flush()

    return await sender.send(email, subject, html_body)


def get_email_sender() -> PostmarkSender:
    """FastAPI dependency; overridden in tests."""
    return PostmarkSender()
