"""Tenant and coverage models — Organization, Vendor, Policy."""

from sqlalchemy import JSON, Column, Date, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow


class Organization(Base):
    __tablename__ = "orgs"
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)

    vendors = relationship("Vendor", back_populates="org")


class Vendor(Base):
    __tablename__ = "vendors"
    id = Column(Integer, primary_key=True)
    org_id = Column(Integer, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    broker_email = Column(String(255))
    created_at = Column(UTCDateTime, default=utcnow)

    org = relationship("Organization", back_populates="vendors")
    policies = relationship("Policy", back_populates="vendor", cascade="all, delete-orphan")


class Policy(Base):
    __tablename__ = "policies"
    id = Column(Integer, primary_key=True)
    org_id = Column(Integer, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True)
    coverage_type = Column(String(100))  # General Liability, Auto, Workers Comp, ...
    policy_number = Column(String(100))
    effective_date = Column(Date)
    expiration_date = Column(Date)
    limits = Column(JSON, default=dict)
    created_at = Column(UTCDateTime, default=utcnow)

    vendor = relationship("Vendor", back_populates="policies")
