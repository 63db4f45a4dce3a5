"""Renewal models — schedule rows, event log, outbound email queue."""

from sqlalchemy import (
    JSON,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from .base import Base, UTCDateTime, utcnow


class RenewalSchedule(Base):
    """One row per policy under renewal watch. next_check_at advances every cycle."""
    __tablename__ = "policy_renewal_schedule"
    id = Column(Integer, primary_key=True)
    org_id = Column(Integer, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False)
    policy_id = Column(Integer, ForeignKey("policies.id", ondelete="CASCADE"), nullable=False)
    vendor_id = Column(Integer, ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False)
    coverage_type = Column(String(100))
    expiration_date = Column(Date)  # denormalized from policies
    next_check_at = Column(UTCDateTime, nullable=False, default=utcnow)
    last_checked_at = Column(UTCDateTime)
    last_stage = Column(Integer)
    status = Column(String(20), nullable=False, default="active")  # active, paused, completed
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("org_id", "policy_id", name="uq_renewal_schedule_policy"),
        Index("ix_renewal_schedule_due", "org_id", "status", "next_check_at"),
    )


class RenewalEvent(Base):
    __tablename__ = "policy_renewal_events"
    id = Column(Integer, primary_key=True)
    org_id = Column(Integer, nullable=False, index=True)
    policy_id = Column(Integer, index=True)
    vendor_id = Column(Integer)
    event_type = Column(String(50), nullable=False)  # scheduled, alert_created, email_planned, email_failed
    message = Column(Text)
    meta = Column(JSON, default=dict)
    created_at = Column(UTCDateTime, default=utcnow)


class RenewalEmail(Base):
    __tablename__ = "renewal_email_queue"
    id = Column(Integer, primary_key=True)
    org_id = Column(Integer, nullable=False)
    vendor_id = Column(Integer, nullable=False)
    policy_id = Column(Integer)
    stage = Column(Integer)
    target = Column(String(20), nullable=False)  # vendor, broker
    to_email = Column(String(255), nullable=False)
    subject = Column(String(500))
    body = Column(Text)
    status = Column(String(20), nullable=False, default="pending")  # pending, sent, failed
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(UTCDateTime, default=utcnow)
    sent_at = Column(UTCDateTime)

    __table_args__ = (
        Index("ix_renewal_email_status", "status", "created_at"),
        Index("ix_renewal_email_dedupe", "policy_id", "stage", "target"),
    )
