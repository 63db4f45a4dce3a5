"""Document intelligence — normalize an extracted COI, classify it, turn issues into alerts.

Pipeline:
  1. doc_intake: collapse the many field aliases extractors produce into one shape
  2. classify_document: coi / policy_dec / endorsement / contract / w9 / unknown
  3. evaluate_document_findings: built-in checks (identifiers, dates, limits vs
     requirements, endorsements, unknown type) → Finding list
  4. each Finding → one upsert_alert keyed by (org, vendor, finding.type, finding.rule_id)

Findings are ephemeral; only the alerts they produce are persisted.

Called by: document intake after extraction
Depends on: alert_store
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from ..schemas.alerts import AlertKey
from ..schemas.documents import Finding
from .alert_store import upsert_alert

EXPIRING_SOON_DAYS = 30


# ── Date helpers ─────────────────────────────────────────────────────────


def safe_parse_date(value: Any) -> date | None:
    """Parse MM/DD/YYYY or ISO dates. Anything unparseable → None."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    parts = text.split("/")
    if len(parts) == 3:
        try:
            month, day, year = (int(p) for p in parts)
            return date(year, month, day)
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def _first(raw: dict, *keys: str) -> Any:
    for k in keys:
        if raw.get(k):
            return raw[k]
    return None


# ── 1) Intake ────────────────────────────────────────────────────────────


def doc_intake(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raw = {}

    effective = safe_parse_date(_first(raw, "effectiveDate", "effDate", "policyEffectiveDate", "policyStart"))
    expiration = safe_parse_date(_first(raw, "expirationDate", "expDate", "policyExpirationDate", "policyEnd"))
    limits = _first(raw, "limits", "coverageLimits")
    endorsements = raw.get("endorsements")

    return {
        "doc_type": _first(raw, "docType", "documentType", "type"),
        "insured_name": _first(raw, "insuredName", "namedInsured", "insured"),
        "policy_number": _first(raw, "policyNumber", "policyNo", "policy"),
        "line_of_business": _first(raw, "lineOfBusiness", "lob", "coverageType"),
        "effective_date": effective,
        "expiration_date": expiration,
        "limits": limits if isinstance(limits, dict) else {},
        "broker_name": _first(raw, "brokerName", "agencyName"),
        "endorsements": endorsements if isinstance(endorsements, list) else [],
    }


# ── 2) Classification ────────────────────────────────────────────────────


def classify_document(doc: dict[str, Any]) -> str:
    hint = str(doc.get("doc_type") or "").lower()

    if "coi" in hint or "certificate" in hint:
        return "coi"
    if "policy" in hint and "dec" in hint:
        return "policy_dec"
    if "endorse" in hint:
        return "endorsement"
    if "contract" in hint or "agreement" in hint:
        return "contract"
    if "w9" in hint or hint == "w-9":
        return "w9"
    # Extractors only fill line of business on certificates
    if doc.get("line_of_business"):
        return "coi"
    return "unknown"


# ── 3) Findings ──────────────────────────────────────────────────────────


def _limit(limits: dict, *keys: str) -> float:
    for k in keys:
        try:
            value = float(limits.get(k) or 0)
        except (TypeError, ValueError):
            continue
        if value:
            return value
    return 0.0


def _limit_findings(limits: dict, coverage_reqs: dict) -> list[Finding]:
    findings = []
    checks = [
        (
            "generalLiability", "minEachOccurrence",
            ("generalLiabilityEachOccurrence", "generalLiability", "glEachOccurrence"),
            "DOC_LIMITS_GL_BELOW_REQ", "generalLiability.eachOccurrence",
            "General Liability each occurrence limit",
        ),
        (
            "autoLiability", "minCombinedSingleLimit",
            ("autoCombinedSingleLimit", "autoLiabilityCombined", "autoCsl"),
            "DOC_LIMITS_AUTO_BELOW_REQ", "autoLiability.combinedSingleLimit",
            "Auto liability combined single limit",
        ),
    ]
    for section, req_key, limit_keys, rule_id, field, label in checks:
        try:
            required = float((coverage_reqs.get(section) or {}).get(req_key) or 0)
        except (TypeError, ValueError):
            required = 0.0
        actual = _limit(limits, *limit_keys)
        if required and actual and actual < required:
            findings.append(Finding(
                rule_id=rule_id,
                type="coverage_insufficient",
                category="limits",
                severity="high",
                field=field,
                message=f"{label} ({actual:,.0f}) is below required minimum ({required:,.0f}).",
                metadata={"required": required, "actual": actual},
            ))
    return findings


def evaluate_document_findings(
    doc: dict[str, Any],
    doc_type: str,
    requirements: dict | None = None,
    today: date | None = None,
) -> list[Finding]:
    today = today or datetime.now(timezone.utc).date()
    findings: list[Finding] = []

    if not doc.get("insured_name"):
        findings.append(Finding(
            rule_id="DOC_MISSING_INSURED_NAME", type="missing_field", category="data_quality",
            severity="medium", field="insuredName",
            message="Document is missing insured / named insured.",
        ))

    if not doc.get("policy_number") and doc_type != "w9":
        findings.append(Finding(
            rule_id="DOC_MISSING_POLICY_NUMBER", type="missing_field", category="data_quality",
            severity="medium", field="policyNumber",
            message="Document is missing a clear policy number.",
        ))

    effective, expiration = doc.get("effective_date"), doc.get("expiration_date")
    if not effective or not expiration:
        findings.append(Finding(
            rule_id="DOC_MISSING_DATES", type="missing_field", category="dates",
            severity="high", field="effectiveDate/expirationDate",
            message="Policy dates are missing or incomplete.",
        ))
    else:
        days_to_expiry = (expiration - today).days
        if expiration < today:
            findings.append(Finding(
                rule_id="DOC_POLICY_EXPIRED", type="expired_policy", category="dates",
                severity="critical", field="expirationDate",
                message="Policy appears to be expired.",
                metadata={"expirationDateISO": expiration.isoformat(), "daysPastExpiry": -days_to_expiry},
            ))
        elif days_to_expiry <= EXPIRING_SOON_DAYS:
            findings.append(Finding(
                rule_id="DOC_POLICY_EXPIRING_SOON", type="expiring_soon", category="dates",
                severity="high", field="expirationDate",
                message="Policy is expiring soon.",
                metadata={"expirationDateISO": expiration.isoformat(), "daysToExpiry": days_to_expiry},
            ))
        if effective > today:
            findings.append(Finding(
                rule_id="DOC_POLICY_NOT_YET_EFFECTIVE", type="not_effective_yet", category="dates",
                severity="medium", field="effectiveDate",
                message="Policy effective date is in the future.",
                metadata={"effectiveDateISO": effective.isoformat(), "daysUntilEffective": (effective - today).days},
            ))

    requirements = requirements or {}
    if isinstance(requirements.get("coverage"), dict):
        findings.extend(_limit_findings(doc.get("limits") or {}, requirements["coverage"]))

    required_endorsements = requirements.get("requiredEndorsements")
    if doc_type in ("coi", "policy_dec", "endorsement") and isinstance(required_endorsements, list):
        codes = [
            str(e.get("code") or e.get("id") or e.get("name") or "").upper() if isinstance(e, dict) else str(e).upper()
            for e in doc.get("endorsements") or []
        ]
        for req in required_endorsements:
            req_code = str(req).upper()
            if not any(req_code in code for code in codes):
                findings.append(Finding(
                    rule_id=f"DOC_MISSING_ENDORSEMENT_{req}", type="missing_endorsement",
                    category="endorsement", severity="high", field="endorsements",
                    message=f"Required endorsement {req} is missing from this document.",
                    metadata={"requiredEndorsement": req},
                ))

    if doc_type == "unknown":
        findings.append(Finding(
            rule_id="DOC_UNKNOWN_TYPE", type="unknown_document_type", category="data_quality",
            severity="low", field="docType",
            message="Document type could not be confidently classified.",
        ))

    return findings


# ── 4) Persist ───────────────────────────────────────────────────────────


def run_document_intelligence(
    db: Session,
    org_id: int,
    vendor_id: int,
    document: dict | None,
    requirements: dict | None = None,
    source: str = "document_upload",
    today: date | None = None,
) -> dict:
    """Normalize, classify and check a document; open one alert per finding. Commits."""
    doc = doc_intake(document)
    doc_type = classify_document(doc)
    findings = evaluate_document_findings(doc, doc_type, requirements, today)

    alert_ids = []
    for f in findings:
        alert_ids.append(upsert_alert(
            db,
            AlertKey(org_id=org_id, vendor_id=vendor_id, type=f.type, rule_id=f.rule_id),
            severity=f.severity,
            category=f.category,
            message=f.message,
            metadata={
                "source": source,
                "docType": doc_type,
                "policyNumber": doc.get("policy_number"),
                "insuredName": doc.get("insured_name"),
                "lineOfBusiness": doc.get("line_of_business"),
                "effectiveDateISO": doc["effective_date"].isoformat() if doc.get("effective_date") else None,
                "expirationDateISO": doc["expiration_date"].isoformat() if doc.get("expiration_date") else None,
                "field": f.field,
                "findingMetadata": f.metadata,
            },
        ))
    db.commit()

    if findings:
        logger.info("Document intelligence org={} vendor={} type={} → {} findings", org_id, vendor_id, doc_type, len(findings))

    return {"doc_type": doc_type, "normalized": doc, "findings": findings, "alert_ids": alert_ids}
