"""Alert model — at most one open row per (org, vendor, type, rule) key."""

from sqlalchemy import JSON, Column, Index, Integer, String, Text, text

from .base import Base, UTCDateTime, utcnow

# rule_key value stored when an alert is not tied to a rule
NO_RULE = ""


class Alert(Base):
    __tablename__ = "alerts_v2"
    id = Column(Integer, primary_key=True)
    org_id = Column(Integer, nullable=False, index=True)
    vendor_id = Column(Integer, nullable=False, index=True)
    type = Column(String(100), nullable=False)  # renew_30d, rule_fail_doc, expired_policy, ...
    rule_id = Column(String(100))
    rule_key = Column(String(100), nullable=False, default=NO_RULE)
    severity = Column(String(20), nullable=False, default="medium")  # critical, high, medium, low
    category = Column(String(50))
    message = Column(Text)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, default=dict)
    created_at = Column(UTCDateTime, default=utcnow)  # touched on every re-trigger
    resolved_at = Column(UTCDateTime)

    __table_args__ = (
        Index(
            "uq_alerts_open_key",
            "org_id",
            "vendor_id",
            "type",
            "rule_key",
            unique=True,
            postgresql_where=text("resolved_at IS NULL"),
            sqlite_where=text("resolved_at IS NULL"),
        ),
        Index("ix_alerts_org_open", "org_id", "resolved_at"),
    )
