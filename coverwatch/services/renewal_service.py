"""
renewal_service.py — Renewal escalation engine: per-policy cycle + org/all-org loops.

One cycle for a due schedule row:
  1. Recompute the stage from the policy's expiration date and `now`
  2. Dormant (no stage): push next_check_at out one interval, stop
  3. Escalating: upsert the stage alert and COMMIT it
  4. Emit an EscalationEvent to the email planner (if any); planner
     failures are logged and recorded, never fatal
  5. Push next_check_at out one interval, record last_stage, commit

Business Rules:
- Stage is never read back as truth; last_stage is audit data, and only
  gates email planning when notify_on_stage_change_only is on
- A persistence error before step 5 propagates: the row keeps its old
  next_check_at and is picked up again on the next pass
- The org loop isolates records: one failing record is rolled back and
  counted, the rest still run
- Processing is sequential; alert upserts are idempotent per key

Called by: scheduler.py, scripts/run_renewals.py
Depends on: stage_classifier, alert_store, document_rule_engine (summary
cache), renewal_email_planner (protocol only)
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from loguru import logger
from sqlalchemy.orm import Session

from ..config import settings
from ..models import Organization, Policy, RenewalEvent, RenewalSchedule, Vendor
from ..schemas.alerts import AlertKey
from ..schemas.renewals import EscalationEvent, RenewalOutcome, RenewalPlan
from .alert_store import upsert_alert
from .document_rule_engine import get_compliance_summary
from .renewal_email_planner import RenewalEmailPlanner
from .stage_classifier import STAGE_ACTIONS, classify_days, days_left


def _check_interval() -> timedelta:
    return timedelta(hours=settings.renewal_check_interval_hours)


# ── Schedule bookkeeping ─────────────────────────────────────────────────


def log_renewal_event(
    db: Session,
    *,
    org_id: int,
    policy_id: int | None,
    vendor_id: int | None,
    event_type: str,
    message: str,
    meta: dict | None = None,
) -> None:
    db.add(
        RenewalEvent(
            org_id=org_id,
            policy_id=policy_id,
            vendor_id=vendor_id,
            event_type=event_type,
            message=message,
            meta=meta or {},
        )
    )


def ensure_renewal_schedule(db: Session, policy: Policy, now: datetime | None = None) -> int | None:
    """Start watching a policy. Returns the schedule id, or None if it has no expiration date."""
    if not policy.expiration_date:
        return None

    existing = (
        db.query(RenewalSchedule.id)
        .filter(RenewalSchedule.policy_id == policy.id, RenewalSchedule.org_id == policy.org_id)
        .first()
    )
    if existing:
        return existing[0]

    now = now or datetime.now(timezone.utc)
    schedule = RenewalSchedule(
        org_id=policy.org_id,
        policy_id=policy.id,
        vendor_id=policy.vendor_id,
        coverage_type=policy.coverage_type,
        expiration_date=policy.expiration_date,
        next_check_at=now,
        status="active",
    )
    db.add(schedule)
    db.flush()
    log_renewal_event(
        db,
        org_id=policy.org_id,
        policy_id=policy.id,
        vendor_id=policy.vendor_id,
        event_type="scheduled",
        message="Initial renewal schedule created.",
        meta={"expiration_date": policy.expiration_date.isoformat()},
    )
    db.commit()
    logger.info("Renewal schedule #{} created for policy #{}", schedule.id, policy.id)
    return schedule.id


def get_due_renewals(db: Session, org_id: int, now: datetime | None = None) -> list[RenewalSchedule]:
    now = now or datetime.now(timezone.utc)
    return (
        db.query(RenewalSchedule)
        .filter(
            RenewalSchedule.org_id == org_id,
            RenewalSchedule.status == "active",
            RenewalSchedule.next_check_at <= now,
        )
        .order_by(RenewalSchedule.next_check_at, RenewalSchedule.id)
        .all()
    )


# ── Stage → actions ──────────────────────────────────────────────────────


def compute_renewal_actions(
    target: RenewalSchedule | date | datetime | None,
    now: datetime | None = None,
) -> RenewalPlan:
    """Stage, days left and the alert actions that stage implies, for a schedule row or a bare expiration."""
    expiration = target.expiration_date if isinstance(target, RenewalSchedule) else target
    if expiration is None:
        return RenewalPlan(stage=None, days_left=None)
    remaining = days_left(expiration, now)
    stage = classify_days(remaining)
    if stage is None:
        return RenewalPlan(stage=None, days_left=remaining)
    return RenewalPlan(stage=int(stage), days_left=remaining, actions=[STAGE_ACTIONS[stage]])


def build_alert_message(
    vendor_name: str,
    coverage: str,
    expiration: date | None,
    remaining: int,
    code: str,
) -> str:
    if code == "renew_90d":
        return f"{coverage} for {vendor_name} expires in ~{remaining} days (≈90 days out). Start renewal planning."
    if code == "renew_30d":
        return f"{coverage} for {vendor_name} expires in ~{remaining} days (30-day window). Send renewal request."
    if code == "renew_7d":
        return f"{coverage} for {vendor_name} expires in {remaining} days (7-day critical window). Follow up with vendor/broker."
    if code == "renew_3d":
        return f"{coverage} for {vendor_name} expires in {remaining} days. High-priority renewal reminder."
    if code == "renew_1d":
        return f"{coverage} for {vendor_name} expires tomorrow. Immediate renewal action required."
    if code == "renew_expired":
        exp = expiration.isoformat() if expiration else "unknown date"
        return (
            f"{coverage} for {vendor_name} is now EXPIRED (expired on {exp}). "
            "Vendor is out of compliance until new COI is received."
        )
    return f"{coverage} for {vendor_name} is approaching expiration (≈{remaining} days remaining)."


def _reschedule(schedule: RenewalSchedule, now: datetime, stage: int | None) -> None:
    schedule.next_check_at = now + _check_interval()
    schedule.last_checked_at = now
    if stage is not None:
        schedule.last_stage = stage
    schedule.updated_at = now


# ── One cycle ────────────────────────────────────────────────────────────


def build_escalation_event(
    db: Session,
    schedule: RenewalSchedule,
    vendor: Vendor | None,
    plan: RenewalPlan,
    expiration: date | None,
) -> EscalationEvent:
    org = db.get(Organization, schedule.org_id)
    return EscalationEvent(
        org_id=schedule.org_id,
        org_name=org.name if org else f"Org #{schedule.org_id}",
        vendor_id=schedule.vendor_id,
        vendor_name=vendor.name if vendor else f"Vendor #{schedule.vendor_id}",
        vendor_email=vendor.email if vendor else None,
        broker_email=vendor.broker_email if vendor else None,
        policy_id=schedule.policy_id,
        schedule_id=schedule.id,
        coverage=schedule.coverage_type or "Policy",
        stage=plan.stage,
        days_left=plan.days_left,
        expiration_date=expiration,
        compliance_summary=get_compliance_summary(db, schedule.org_id, schedule.vendor_id),
    )


async def run_renewal_for_schedule(
    db: Session,
    schedule: RenewalSchedule,
    planner: RenewalEmailPlanner | None = None,
    now: datetime | None = None,
    *,
    notify_on_stage_change_only: bool | None = None,
) -> RenewalOutcome:
    """Run one escalation cycle for a schedule row."""
    now = now or datetime.now(timezone.utc)
    if notify_on_stage_change_only is None:
        notify_on_stage_change_only = settings.renewal_notify_on_stage_change_only

    policy = db.get(Policy, schedule.policy_id)
    if policy is None:
        logger.warning("Renewal schedule #{} points at missing policy #{} — skipping", schedule.id, schedule.policy_id)
    elif policy.expiration_date != schedule.expiration_date:
        # Re-uploaded policy; keep the denormalized copy current
        schedule.expiration_date = policy.expiration_date
        schedule.coverage_type = policy.coverage_type or schedule.coverage_type

    expiration = schedule.expiration_date
    plan = compute_renewal_actions(expiration, now) if policy is not None else RenewalPlan(stage=None, days_left=None)
    outcome = RenewalOutcome(
        schedule_id=schedule.id,
        policy_id=schedule.policy_id,
        stage=plan.stage,
        days_left=plan.days_left,
    )

    if plan.stage is None:
        _reschedule(schedule, now, None)
        db.commit()
        return outcome

    previous_stage = schedule.last_stage
    vendor = db.get(Vendor, schedule.vendor_id)
    vendor_name = vendor.name if vendor else f"Vendor #{schedule.vendor_id}"
    coverage = schedule.coverage_type or "Policy"

    for action in plan.actions:
        message = build_alert_message(vendor_name, coverage, expiration, plan.days_left, action.code)
        outcome.alert_id = upsert_alert(
            db,
            AlertKey(org_id=schedule.org_id, vendor_id=schedule.vendor_id, type=action.code),
            severity=action.severity,
            category="renewal",
            message=message,
            metadata={
                "scheduleId": schedule.id,
                "policyId": schedule.policy_id,
                "daysLeft": plan.days_left,
                "stage": plan.stage,
                "expiration_date": expiration.isoformat() if expiration else None,
                "coverage_type": coverage,
            },
        )
        outcome.message = message
        log_renewal_event(
            db,
            org_id=schedule.org_id,
            policy_id=schedule.policy_id,
            vendor_id=schedule.vendor_id,
            event_type="alert_created",
            message=message,
            meta={"code": action.code, "severity": action.severity, "daysLeft": plan.days_left},
        )
    # Alerts are the primary guarantee; persist them before any email work
    db.commit()

    should_notify = planner is not None and (
        not notify_on_stage_change_only or previous_stage != plan.stage
    )
    planning_failed = False
    if should_notify:
        try:
            event = build_escalation_event(db, schedule, vendor, plan, expiration)
            queued = await planner.plan(db, event)
            outcome.emails_queued = len(queued)
            log_renewal_event(
                db,
                org_id=schedule.org_id,
                policy_id=schedule.policy_id,
                vendor_id=schedule.vendor_id,
                event_type="email_planned",
                message=f"{len(queued)} renewal email(s) queued for stage {plan.stage}.",
                meta={"stage": plan.stage, "emailIds": queued},
            )
        except Exception as e:
            db.rollback()
            planning_failed = True
            logger.exception("Email planning failed for schedule #{}: {}", schedule.id, e)
            outcome.email_error = str(e)
            log_renewal_event(
                db,
                org_id=schedule.org_id,
                policy_id=schedule.policy_id,
                vendor_id=schedule.vendor_id,
                event_type="email_failed",
                message=f"Email planning failed: {e}",
                meta={"stage": plan.stage},
            )

    # A failed notification is retried on the next cycle of the same stage
    _reschedule(schedule, now, previous_stage if planning_failed else plan.stage)
    db.commit()
    return outcome


# ── Loops ────────────────────────────────────────────────────────────────


async def run_renewals_for_org(
    db: Session,
    org_id: int,
    planner: RenewalEmailPlanner | None = None,
    now: datetime | None = None,
) -> dict:
    """Run every due schedule for one org, sequentially."""
    now = now or datetime.now(timezone.utc)
    due = get_due_renewals(db, org_id, now)
    if not due:
        return {"org_id": org_id, "count": 0, "triggered": 0, "failed": 0, "details": []}

    details = []
    failed = 0
    for schedule_id in [s.id for s in due]:
        schedule = db.get(RenewalSchedule, schedule_id)
        try:
            outcome = await run_renewal_for_schedule(db, schedule, planner, now)
        except Exception as e:
            db.rollback()
            failed += 1
            logger.exception("Renewal cycle failed for schedule #{} (org {}): {}", schedule_id, org_id, e)
            continue
        if outcome.stage is not None:
            details.append(outcome)

    logger.info(
        "Renewals org={} due={} triggered={} failed={}", org_id, len(due), len(details), failed,
    )
    return {
        "org_id": org_id,
        "count": len(due),
        "triggered": len(details),
        "failed": failed,
        "details": details,
    }


async def run_renewals_for_all_orgs(
    db: Session,
    planner: RenewalEmailPlanner | None = None,
    now: datetime | None = None,
) -> list[dict]:
    now = now or datetime.now(timezone.utc)
    org_ids = [row[0] for row in db.query(Organization.id).order_by(Organization.id).all()]
    results = []
    for org_id in org_ids:
        results.append(await run_renewals_for_org(db, org_id, planner, now))
    return results
