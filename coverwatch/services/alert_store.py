"""
alert_store.py — Deduplicating alert upsert/resolve and read-only views.

Every alert is identified by (org_id, vendor_id, type, rule_id-or-sentinel).
At most one unresolved row exists per key: repeat triggers touch the open
row (message, severity, category, metadata, created_at) instead of adding
another one. Resolution closes the row; the next trigger opens a new one.

Business Rules:
- upsert_alert returns the id of the open row it created or touched
- The partial unique index uq_alerts_open_key backs the invariant; a
  concurrent insert that loses the race is retried as a touch-update
- resolve_alert is scoped by org and idempotent
- Callers own the transaction (commit/rollback)

Called by: renewal_service.py, document_rule_engine.py, document_intelligence.py
Depends on: models.Alert
"""

from datetime import datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import NO_RULE, Alert
from ..schemas.alerts import AlertKey, Severity

SEVERITIES = tuple(s.value for s in Severity)


def _rule_key(rule_id: Any) -> str:
    return NO_RULE if rule_id is None else str(rule_id)


def _find_open_alert(db: Session, key: AlertKey) -> Alert | None:
    return (
        db.query(Alert)
        .filter(
            Alert.org_id == key.org_id,
            Alert.vendor_id == key.vendor_id,
            Alert.type == key.type,
            Alert.rule_key == _rule_key(key.rule_id),
            Alert.resolved_at.is_(None),
        )
        .first()
    )


def _touch(alert: Alert, severity: str, category: str | None, message: str, metadata: dict) -> None:
    alert.message = message
    alert.severity = severity
    alert.category = category
    alert.meta = metadata
    alert.created_at = datetime.now(timezone.utc)


# ── Upsert / Resolve ─────────────────────────────────────────────────────


def upsert_alert(
    db: Session,
    key: AlertKey,
    *,
    severity: str,
    category: str | None,
    message: str,
    metadata: dict | None = None,
) -> int:
    """Open an alert for `key`, or touch the one already open. Returns its id."""
    metadata = metadata or {}

    existing = _find_open_alert(db, key)
    if existing:
        _touch(existing, severity, category, message, metadata)
        db.flush()
        return existing.id

    alert = Alert(
        org_id=key.org_id,
        vendor_id=key.vendor_id,
        type=key.type,
        rule_id=None if key.rule_id is None else str(key.rule_id),
        rule_key=_rule_key(key.rule_id),
        severity=severity,
        category=category,
        message=message,
        meta=metadata,
        created_at=datetime.now(timezone.utc),
    )
    try:
        with db.begin_nested():
            db.add(alert)
    except IntegrityError:
        # Another writer opened the same key between our lookup and insert
        existing = _find_open_alert(db, key)
        if existing is None:
            raise
        logger.info("Alert insert lost race for {} — touching #{}", key, existing.id)
        _touch(existing, severity, category, message, metadata)
        db.flush()
        return existing.id

    logger.info(
        "alert_created id={} org={} vendor={} type={} severity={} rule={}",
        alert.id, key.org_id, key.vendor_id, key.type, severity, key.rule_id,
    )
    return alert.id


def resolve_alert(db: Session, alert_id: int, org_id: int) -> bool:
    """Close an open alert. Returns False if it was already resolved or not found."""
    updated = (
        db.query(Alert)
        .filter(
            Alert.id == alert_id,
            Alert.org_id == org_id,
            Alert.resolved_at.is_(None),
        )
        .update({"resolved_at": datetime.now(timezone.utc)}, synchronize_session="fetch")
    )
    if updated:
        logger.info("alert_resolved id={} org={}", alert_id, org_id)
    return bool(updated)


# ── Read-only views ──────────────────────────────────────────────────────


def _org_alerts(db: Session, org_id: int, include_resolved: bool = False):
    query = db.query(Alert).filter(Alert.org_id == org_id)
    if not include_resolved:
        query = query.filter(Alert.resolved_at.is_(None))
    return query


def list_alerts(
    db: Session,
    org_id: int,
    vendor_id: int | None = None,
    limit: int = 100,
    include_resolved: bool = False,
) -> list[Alert]:
    query = _org_alerts(db, org_id, include_resolved)
    if vendor_id is not None:
        query = query.filter(Alert.vendor_id == vendor_id)
    return query.order_by(Alert.created_at.desc(), Alert.id.desc()).limit(limit).all()


def get_alert_stats(db: Session, org_id: int, include_resolved: bool = False) -> dict:
    """Counts by severity, overall and per vendor, with each vendor's latest alert."""
    rows = (
        _org_alerts(db, org_id, include_resolved)
        .order_by(Alert.created_at.desc(), Alert.id.desc())
        .all()
    )

    counts = {s: 0 for s in SEVERITIES}
    vendors: dict[int, dict] = {}

    for r in rows:
        sev = (r.severity or "").lower()
        if sev in counts:
            counts[sev] += 1

        v = vendors.setdefault(
            r.vendor_id,
            {"vendor_id": r.vendor_id, "total": 0, **{s: 0 for s in SEVERITIES}, "latest": None},
        )
        v["total"] += 1
        if sev in counts:
            v[sev] += 1
        if v["latest"] is None:
            v["latest"] = {
                "code": r.type,
                "message": r.message,
                "severity": sev or "medium",
                "created_at": r.created_at.isoformat() if r.created_at else None,
            }

    return {"total": sum(counts.values()), "counts_by_severity": counts, "vendors": vendors}


def _open_ages_days(db: Session, org_id: int, now: datetime | None) -> list[int]:
    now = now or datetime.now(timezone.utc)
    created = [row[0] for row in _org_alerts(db, org_id).with_entities(Alert.created_at).all()]
    return [int((now - c).total_seconds() // 86400) for c in created if c is not None]


def get_alert_aging(db: Session, org_id: int, now: datetime | None = None) -> dict:
    ages = _open_ages_days(db, org_id, now)
    if not ages:
        return {"oldest": 0, "avg_age": 0, "over7": 0, "over30": 0}
    return {
        "oldest": max(ages),
        "avg_age": round(sum(ages) / len(ages)),
        "over7": sum(1 for a in ages if a >= 7),
        "over30": sum(1 for a in ages if a >= 30),
    }


def get_sla_summary(db: Session, org_id: int, now: datetime | None = None) -> dict:
    ages = _open_ages_days(db, org_id, now)
    return {
        "total": len(ages),
        "over7": sum(1 for a in ages if a >= 7),
        "over14": sum(1 for a in ages if a >= 14),
        "over30": sum(1 for a in ages if a >= 30),
    }


def get_top_alert_types(db: Session, org_id: int, limit: int = 8) -> list[dict]:
    rows = (
        _org_alerts(db, org_id)
        .with_entities(Alert.type, func.count(Alert.id))
        .group_by(Alert.type)
        .order_by(func.count(Alert.id).desc(), Alert.type)
        .limit(limit)
        .all()
    )
    return [{"type": t, "count": c} for t, c in rows]


def get_critical_vendors(db: Session, org_id: int, limit: int = 10) -> list[dict]:
    rows = (
        _org_alerts(db, org_id)
        .filter(func.lower(Alert.severity) == "critical")
        .with_entities(Alert.vendor_id, func.count(Alert.id))
        .group_by(Alert.vendor_id)
        .order_by(func.count(Alert.id).desc(), Alert.vendor_id)
        .limit(limit)
        .all()
    )
    return [{"vendor_id": v, "critical_count": c} for v, c in rows]
