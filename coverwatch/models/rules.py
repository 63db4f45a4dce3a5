"""Organization field rules and the per-vendor compliance cache."""

from sqlalchemy import JSON, Boolean, Column, Integer, String, Text, UniqueConstraint

from .base import Base, UTCDateTime, utcnow


class RequirementRule(Base):
    __tablename__ = "requirement_rules"
    id = Column(Integer, primary_key=True)
    org_id = Column(Integer, nullable=False, index=True)
    field_key = Column(String(255), nullable=False)  # dot path, e.g. coverage.gl.each_occurrence
    operator = Column(String(20), nullable=False)  # equals, not_equals, gte, lte, contains
    expected_value = Column(JSON)
    severity = Column(String(20))
    requirement_text = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, default=utcnow)


class VendorComplianceCache(Base):
    """Materialized result of the latest document rule run. Replaced, never appended."""
    __tablename__ = "vendor_compliance_cache"
    id = Column(Integer, primary_key=True)
    org_id = Column(Integer, nullable=False)
    vendor_id = Column(Integer, nullable=False)
    passing = Column(JSON, default=list)
    failing = Column(JSON, default=list)
    missing = Column(JSON, default=list)
    status = Column(String(20), default="unknown")  # pass, fail, unknown
    summary = Column(Text)
    last_checked_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("org_id", "vendor_id", name="uq_compliance_cache_vendor"),
    )
