"""Renewal email queue sender — drains pending rows through Resend.

Each row is sent at most once successfully. Failures increment attempts
and keep the row pending until email_max_attempts is reached, then mark it
failed. Every row is committed on its own so one bad address cannot roll
back the rest of the batch.

Called by: scheduler tick, scripts/run_renewals.py --drain
Depends on: http_client, config, models.RenewalEmail
"""

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.orm import Session

from ..config import settings
from ..http_client import http
from ..models import RenewalEmail

RESEND_URL = "https://api.resend.com/emails"

Sender = Callable[[str, str, str], Awaitable[str]]


async def send_email(to_email: str, subject: str, html_body: str) -> str:
    """Send one message via Resend. Returns the provider message id; raises on HTTP errors."""
    resp = await http.post(
        RESEND_URL,
        headers={
            "Authorization": f"Bearer {settings.resend_api_key}",
            "Content-Type": "application/json",
        },
        json={
            "from": settings.email_from,
            "to": [to_email],
            "subject": subject,
            "html": html_body,
        },
        timeout=15,
    )
    resp.raise_for_status()
    return resp.json().get("id", "")


async def process_renewal_email_queue(
    db: Session,
    limit: int | None = None,
    sender: Sender | None = None,
) -> list[dict]:
    """Send up to `limit` pending emails. Returns [{id, status, error}] per row touched."""
    if sender is None:
        if not settings.resend_api_key:
            logger.warning("RESEND_API_KEY not set — renewal emails left pending")
            return []
        sender = send_email

    rows = (
        db.query(RenewalEmail)
        .filter(
            RenewalEmail.status == "pending",
            RenewalEmail.attempts < settings.email_max_attempts,
        )
        .order_by(RenewalEmail.created_at, RenewalEmail.id)
        .limit(limit or settings.email_queue_batch_size)
        .all()
    )

    results = []
    for row in rows:
        row.attempts = (row.attempts or 0) + 1
        try:
            await sender(row.to_email, row.subject or "", row.body or "")
        except Exception as e:
            row.last_error = str(e)[:1000]
            if row.attempts >= settings.email_max_attempts:
                row.status = "failed"
            logger.warning("Renewal email #{} to {} failed (attempt {}): {}", row.id, row.to_email, row.attempts, e)
            results.append({"id": row.id, "status": row.status, "error": row.last_error})
        else:
            row.status = "sent"
            row.sent_at = datetime.now(timezone.utc)
            row.last_error = None
            results.append({"id": row.id, "status": "sent", "error": None})
        db.commit()

    if results:
        sent = sum(1 for r in results if r["status"] == "sent")
        logger.info("Email queue: {} sent, {} not sent", sent, len(results) - sent)
    return results
