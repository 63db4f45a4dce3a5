"""Renewal escalation types — stage actions and the event handed to email planning."""

from datetime import date

from pydantic import BaseModel, Field


class RenewalAction(BaseModel):
    severity: str
    code: str


class RenewalPlan(BaseModel):
    stage: int | None
    days_left: int | None
    actions: list[RenewalAction] = Field(default_factory=list)


class EscalationEvent(BaseModel):
    """Emitted once per actionable renewal cycle; consumed by an email planner."""
    org_id: int
    org_name: str
    vendor_id: int
    vendor_name: str
    vendor_email: str | None = None
    broker_email: str | None = None
    policy_id: int
    schedule_id: int
    coverage: str
    stage: int
    days_left: int
    expiration_date: date | None = None
    compliance_summary: str = ""


class RenewalOutcome(BaseModel):
    schedule_id: int
    policy_id: int
    stage: int | None
    days_left: int | None
    alert_id: int | None = None
    message: str | None = None
    emails_queued: int = 0
    email_error: str | None = None
