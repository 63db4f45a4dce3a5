"""
conftest.py — Shared test fixtures for the renewal engine

Provides an in-memory SQLite database and factory fixtures for the core
models (Organization, Vendor, Policy, RenewalSchedule, RequirementRule).

Business Rules:
- All tests run against an isolated in-memory DB
- Each test function gets fresh tables
- Tests pass explicit `now` values; nothing depends on the wall clock

Called by: all test files via pytest autodiscovery
Depends on: coverwatch.models (Base)
"""

import os
os.environ["TESTING"] = "1"  # Must be set before importing coverwatch modules

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from coverwatch.models import (
    Base, Organization, Policy, RenewalSchedule, RequirementRule, Vendor,
)

# Fixed clock shared by most tests
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

# ── In-memory SQLite engine ──────────────────────────────────────────

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default — turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")
    # pysqlite's own BEGIN handling breaks SAVEPOINT; emit BEGIN ourselves
    dbapi_conn.isolation_level = None


@event.listens_for(engine, "begin")
def _do_begin(conn):
    conn.exec_driver_sql("BEGIN")


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def org(db_session: Session) -> Organization:
    o = Organization(name="Harbor Property Group", created_at=NOW)
    db_session.add(o)
    db_session.commit()
    db_session.refresh(o)
    return o


@pytest.fixture()
def vendor(db_session: Session, org: Organization) -> Vendor:
    """A vendor with both a direct and a broker address."""
    v = Vendor(
        org_id=org.id,
        name="Summit Roofing LLC",
        email="office@summitroofing.com",
        broker_email="agent@midwestbrokers.com",
        created_at=NOW,
    )
    db_session.add(v)
    db_session.commit()
    db_session.refresh(v)
    return v


@pytest.fixture()
def make_policy(db_session: Session, vendor: Vendor):
    """Factory: a policy with the given expiration (default vendor unless one is passed)."""
    def _make(expiration: date | None, coverage="General Liability", owner: Vendor | None = None) -> Policy:
        owner = owner or vendor
        p = Policy(
            org_id=owner.org_id,
            vendor_id=owner.id,
            coverage_type=coverage,
            policy_number="GL-100200",
            effective_date=date(2025, 6, 1),
            expiration_date=expiration,
            limits={"generalLiabilityEachOccurrence": 1000000},
            created_at=NOW,
        )
        db_session.add(p)
        db_session.commit()
        db_session.refresh(p)
        return p
    return _make


@pytest.fixture()
def make_schedule(db_session: Session):
    """Factory: an active renewal schedule for a policy, due at `next_check_at`."""
    def _make(policy: Policy, next_check_at: datetime = NOW) -> RenewalSchedule:
        s = RenewalSchedule(
            org_id=policy.org_id,
            policy_id=policy.id,
            vendor_id=policy.vendor_id,
            coverage_type=policy.coverage_type,
            expiration_date=policy.expiration_date,
            next_check_at=next_check_at,
            status="active",
        )
        db_session.add(s)
        db_session.commit()
        db_session.refresh(s)
        return s
    return _make


@pytest.fixture()
def policy(make_policy) -> Policy:
    """GL policy expiring 45 days after NOW."""
    return make_policy(date(2026, 4, 15))


@pytest.fixture()
def schedule(make_schedule, policy: Policy) -> RenewalSchedule:
    return make_schedule(policy)


@pytest.fixture()
def make_rule(db_session: Session, org: Organization):
    """Factory: an active requirement rule for the default org."""
    def _make(field_key: str, operator: str, expected, severity="high", text=None) -> RequirementRule:
        r = RequirementRule(
            org_id=org.id,
            field_key=field_key,
            operator=operator,
            expected_value=expected,
            severity=severity,
            requirement_text=text,
            is_active=True,
        )
        db_session.add(r)
        db_session.commit()
        db_session.refresh(r)
        return r
    return _make
