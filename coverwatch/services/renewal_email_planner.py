"""Renewal email planning — turns an EscalationEvent into queued vendor/broker emails.

The renewal scheduler emits one EscalationEvent per actionable cycle and
hands it to a planner; the planner alone decides who gets mail and what it
says. The scheduler never inspects message content.

Design rules:
  - Vendor email whenever the vendor has an address
  - Broker email only at stage 7 or more urgent (7, 3, 1, expired)
  - Copy comes from the LLM; a deterministic template is used whenever the
    LLM is unavailable or returns something unusable
  - With dedupe on, a (policy, stage, target) already pending or sent is
    not queued again, so daily cycles in the same stage stay quiet
  - Rows are added and flushed; the caller commits

Called by: renewal_service.run_renewal_for_schedule, scheduler
Depends on: gradient_service, models.RenewalEmail
"""

from __future__ import annotations

import html
from typing import Protocol

from loguru import logger
from sqlalchemy.orm import Session

from ..config import settings
from ..models import RenewalEmail
from ..schemas.renewals import EscalationEvent
from .gradient_service import gradient_json
from .stage_classifier import describe_stage

SYSTEM_PROMPT = """\
You write insurance compliance reminder emails on behalf of an organization \
that requires its vendors to keep a current Certificate of Insurance (COI) on file.

Writing rules:
- 4-6 sentences of body text
- Clear request to upload an updated COI
- Authoritative but respectful; firmer as urgency rises
- When writing to a broker, ask them to coordinate the renewal with their insured
- No placeholders, no greeting line, no signature

Return ONLY valid JSON:
{
  "subject": "...",
  "body": "..."
}"""


class RenewalEmailPlanner(Protocol):
    async def plan(self, db: Session, event: EscalationEvent) -> list[int]:
        """Queue notifications for one escalation event. Returns queued row ids."""
        ...


# ── Drafting ─────────────────────────────────────────────────────────────


def _build_prompt(event: EscalationEvent, target: str) -> str:
    label, urgency = describe_stage(event.stage)
    exp = event.expiration_date.isoformat() if event.expiration_date else "unknown"
    return (
        f"Recipient: {target}\n"
        f"Org: {event.org_name}\n"
        f"Vendor: {event.vendor_name}\n"
        f"Coverage: {event.coverage}\n"
        f"Stage: {label}\n"
        f"Days Left: {event.days_left}\n"
        f"Expiration Date: {exp}\n"
        f"Urgency: {urgency}\n"
        f"Compliance Summary: {event.compliance_summary or 'n/a'}\n\n"
        "Write the reminder email."
    )


def fallback_email(event: EscalationEvent, target: str) -> dict:
    label, _ = describe_stage(event.stage)
    subject = f"Insurance renewal required — {event.coverage} ({label})"
    if event.stage == 0:
        when = "has expired"
    elif event.days_left <= 1:
        when = "expires tomorrow"
    else:
        when = f"expires in {event.days_left} days"

    if target == "broker":
        body = (
            f"The {event.coverage} policy for your insured {event.vendor_name} {when}. "
            f"{event.org_name} requires an updated Certificate of Insurance to keep the vendor in compliance. "
            "Please coordinate the renewal with your insured and upload the new COI as soon as it is issued."
        )
    else:
        body = (
            f"Your {event.coverage} policy on file with {event.org_name} {when}. "
            "To stay in compliance, please upload an updated Certificate of Insurance. "
            "If the policy has already been renewed, uploading the new certificate is all that is needed."
        )
    return {"subject": subject, "body": body}


async def draft_renewal_email(event: EscalationEvent, target: str) -> dict:
    """Subject + plain-text body for one recipient. Never None."""
    result = await gradient_json(
        _build_prompt(event, target),
        system=SYSTEM_PROMPT,
        max_tokens=600,
        temperature=0.2,
    )
    if isinstance(result, dict):
        subject = str(result.get("subject") or "").strip()
        body = str(result.get("body") or "").strip()
        if body:
            return {"subject": subject or fallback_email(event, target)["subject"], "body": body}
        logger.warning("Renewal email draft had no body — using template")
    return fallback_email(event, target)


def wrap_email_html(title: str, body: str) -> str:
    """Branded HTML shell around the plain-text copy."""
    paragraphs = "".join(
        f'<p style="font-size:14px;line-height:1.6;color:#cbd5f5">{html.escape(p)}</p>'
        for p in body.split("\n\n")
        if p.strip()
    )
    upload_url = f"{settings.app_url.rstrip('/')}/upload"
    return (
        '<div style="background:#020617;padding:32px;font-family:Arial,Helvetica,sans-serif">'
        '<div style="max-width:600px;margin:auto;background:#0f172a;border-radius:16px;padding:28px;color:#e5e7eb">'
        f"<h2>{html.escape(title)}</h2>"
        f"{paragraphs}"
        f'<a href="{upload_url}" style="display:inline-block;margin-top:18px;padding:12px 18px;'
        'border-radius:10px;background:#38bdf8;color:#020617;text-decoration:none;font-weight:600">'
        "Upload Updated COI</a>"
        '<hr style="margin:24px 0;border-color:#1e293b" />'
        f'<p style="font-size:12px;color:#94a3b8">This message was sent by {html.escape(settings.app_name)} '
        "as part of automated compliance monitoring.</p>"
        f'<p style="font-size:12px;color:#64748b">Questions? Contact {html.escape(settings.support_email)}</p>'
        "</div></div>"
    )


# ── Queueing ─────────────────────────────────────────────────────────────


def enqueue_renewal_email(
    db: Session,
    event: EscalationEvent,
    target: str,
    to_email: str,
    subject: str,
    body: str,
) -> int:
    row = RenewalEmail(
        org_id=event.org_id,
        vendor_id=event.vendor_id,
        policy_id=event.policy_id,
        stage=event.stage,
        target=target,
        to_email=to_email,
        subject=subject,
        body=wrap_email_html(subject, body),
        status="pending",
        attempts=0,
    )
    db.add(row)
    db.flush()
    return row.id


def _already_queued(db: Session, event: EscalationEvent, target: str) -> bool:
    return (
        db.query(RenewalEmail.id)
        .filter(
            RenewalEmail.policy_id == event.policy_id,
            RenewalEmail.stage == event.stage,
            RenewalEmail.target == target,
            RenewalEmail.status.in_(["pending", "sent"]),
        )
        .first()
        is not None
    )


class AutoEmailPlanner:
    """Default planner: LLM-drafted vendor mail, plus broker mail from stage 7 on."""

    def __init__(self, dedupe: bool | None = None, broker_max_stage: int | None = None):
        self.dedupe = settings.renewal_email_dedupe if dedupe is None else dedupe
        self.broker_max_stage = (
            settings.broker_escalation_max_stage if broker_max_stage is None else broker_max_stage
        )

    def recipients(self, event: EscalationEvent) -> list[tuple[str, str]]:
        targets = []
        if event.vendor_email:
            targets.append(("vendor", event.vendor_email))
        if event.broker_email and event.stage <= self.broker_max_stage:
            targets.append(("broker", event.broker_email))
        return targets

    async def plan(self, db: Session, event: EscalationEvent) -> list[int]:
        queued = []
        for target, to_email in self.recipients(event):
            if self.dedupe and _already_queued(db, event, target):
                logger.debug("Renewal email already queued policy={} stage={} target={}", event.policy_id, event.stage, target)
                continue
            draft = await draft_renewal_email(event, target)
            queued.append(enqueue_renewal_email(db, event, target, to_email, draft["subject"], draft["body"]))

        if queued:
            logger.info(
                "Queued {} renewal email(s) policy={} vendor={} stage={}",
                len(queued), event.policy_id, event.vendor_id, event.stage,
            )
        return queued
