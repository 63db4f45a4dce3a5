"""
document_rule_engine.py — Org field rules evaluated against extracted COI data.

Loads an organization's active requirement_rules (field path + operator +
expected value), evaluates each against the structured document that
extraction produced, opens a `rule_fail_doc` alert per failing rule, and
replaces the vendor's compliance cache row with the result.

Business Rules:
- Field paths are dot paths ("coverage.gl.each_occurrence"); a missing path
  yields None and is evaluated like any other value
- Operators: equals, not_equals, gte, lte (numeric), contains (list
  membership or case-insensitive substring)
- Unknown operators follow UnknownOperatorPolicy: FAIL_OPEN passes the rule
  (historical behaviour), FAIL_CLOSED fails it. Either way a warning is logged
- Status: fail if any rule failed, pass if any passed and none failed,
  unknown when there were no rules
- One cache row per (org, vendor), overwritten on every run

Called by: document intake after extraction
Depends on: models (RequirementRule, VendorComplianceCache), alert_store
"""

from datetime import datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from ..config import settings
from ..models import RequirementRule, VendorComplianceCache
from ..schemas.alerts import AlertKey
from ..schemas.documents import (
    DocumentEvaluation,
    RuleDetail,
    RuleOperator,
    RuleOutcome,
    UnknownOperatorPolicy,
)
from .alert_store import upsert_alert

RULE_FAIL_ALERT_TYPE = "rule_fail_doc"


# ── Value helpers ────────────────────────────────────────────────────────


def get_value_by_path(obj: Any, path: str | None) -> Any:
    """Read a nested value: "limits.gl.0.amount". Missing segments → None."""
    if obj is None or not path:
        return None
    current = obj
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, (list, tuple)) and part.lstrip("-").isdigit():
            idx = int(part)
            current = current[idx] if -len(current) <= idx < len(current) else None
        else:
            return None
    return current


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        return None


def _loose_equals(actual: Any, expected: Any) -> bool:
    """Equality that treats 1000000 and "1,000,000" as the same value."""
    if actual is None or expected is None:
        return actual is None and expected is None
    if actual == expected:
        return True
    a, e = _to_number(actual), _to_number(expected)
    if a is not None and e is not None:
        return a == e
    if isinstance(actual, str) or isinstance(expected, str):
        return str(actual).strip() == str(expected).strip()
    return False


def _compare(actual: Any, expected: Any, op: RuleOperator) -> bool:
    a, e = _to_number(actual), _to_number(expected)
    if a is None or e is None:
        return False
    return a >= e if op is RuleOperator.GTE else a <= e


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple)):
        return any(_loose_equals(item, expected) for item in actual)
    if isinstance(actual, str):
        return str(expected).lower() in actual.lower()
    return False


# ── Rule evaluation ──────────────────────────────────────────────────────


def evaluate_field_rule(
    rule: RequirementRule,
    doc: dict,
    unknown_operator_policy: UnknownOperatorPolicy = UnknownOperatorPolicy.FAIL_OPEN,
) -> tuple[bool, RuleDetail]:
    """Apply one field rule to an extracted document. Returns (passed, detail)."""
    actual = get_value_by_path(doc, rule.field_key)
    expected = rule.expected_value
    detail = RuleDetail(
        field_key=rule.field_key,
        operator=rule.operator,
        expected_value=expected,
        actual_value=actual,
    )

    try:
        op = RuleOperator(rule.operator)
    except ValueError:
        passed = unknown_operator_policy is UnknownOperatorPolicy.FAIL_OPEN
        logger.warning(
            "Rule #{} has unknown operator {!r} — {} ({})",
            rule.id, rule.operator, "passing" if passed else "failing", unknown_operator_policy.value,
        )
        return passed, detail

    if op is RuleOperator.EQUALS:
        passed = _loose_equals(actual, expected)
    elif op is RuleOperator.NOT_EQUALS:
        passed = not _loose_equals(actual, expected)
    elif op in (RuleOperator.GTE, RuleOperator.LTE):
        passed = _compare(actual, expected, op)
    else:
        passed = _contains(actual, expected)

    return passed, detail


def _failure_message(rule: RequirementRule) -> str:
    if rule.requirement_text:
        return rule.requirement_text
    return f"Rule failed on {rule.field_key} ({rule.operator} {rule.expected_value})"


def run_rules_on_extracted_document(
    db: Session,
    org_id: int,
    vendor_id: int,
    policy_id: int | None,
    extracted: dict | None,
    *,
    unknown_operator_policy: UnknownOperatorPolicy | None = None,
) -> DocumentEvaluation | None:
    """Evaluate all active org rules on an extracted document.

    Opens/touches one rule_fail_doc alert per failing rule, replaces the
    vendor's compliance cache row, and commits. Returns None when org or
    vendor is missing or there is no document at all; an empty document is
    evaluated (every field reads as missing).
    """
    if not org_id or not vendor_id or extracted is None:
        return None

    policy = unknown_operator_policy or UnknownOperatorPolicy(settings.unknown_rule_operator_policy)

    rules = (
        db.query(RequirementRule)
        .filter(RequirementRule.org_id == org_id, RequirementRule.is_active.is_(True))
        .order_by(RequirementRule.id)
        .all()
    )

    result = DocumentEvaluation()

    for rule in rules:
        passed, detail = evaluate_field_rule(rule, extracted, policy)
        outcome = RuleOutcome(
            rule_id=rule.id,
            field_key=rule.field_key,
            operator=rule.operator,
            expected_value=rule.expected_value,
            severity=rule.severity or "medium",
            detail=detail,
            requirement_text=rule.requirement_text or "",
        )

        if passed:
            result.passing.append(outcome)
            continue

        result.failing.append(outcome)
        upsert_alert(
            db,
            AlertKey(org_id=org_id, vendor_id=vendor_id, type=RULE_FAIL_ALERT_TYPE, rule_id=str(rule.id)),
            severity=rule.severity or "high",
            category="rule",
            message=_failure_message(rule),
            metadata={
                "policyId": policy_id,
                "field_key": rule.field_key,
                "operator": rule.operator,
                "expected_value": rule.expected_value,
                "actual_value": detail.actual_value,
            },
        )

    if result.failing:
        result.status = "fail"
    elif result.passing:
        result.status = "pass"
    else:
        result.status = "unknown"

    result.summary = (
        f"Document-based rules evaluated: {len(result.passing)} passing, "
        f"{len(result.failing)} failing. Status: {result.status}."
    )

    _replace_compliance_cache(db, org_id, vendor_id, result)
    db.commit()

    logger.info(
        "Document rules org={} vendor={} policy={} → {} ({} pass / {} fail)",
        org_id, vendor_id, policy_id, result.status, len(result.passing), len(result.failing),
    )
    return result


def _replace_compliance_cache(db: Session, org_id: int, vendor_id: int, result: DocumentEvaluation) -> None:
    payload = result.model_dump(mode="json")
    row = (
        db.query(VendorComplianceCache)
        .filter(
            VendorComplianceCache.org_id == org_id,
            VendorComplianceCache.vendor_id == vendor_id,
        )
        .first()
    )
    if row is None:
        row = VendorComplianceCache(org_id=org_id, vendor_id=vendor_id)
        db.add(row)

    row.passing = payload["passing"]
    row.failing = payload["failing"]
    row.missing = payload["missing"]
    row.status = result.status
    row.summary = result.summary
    row.last_checked_at = datetime.now(timezone.utc)
    db.flush()


def get_compliance_summary(db: Session, org_id: int, vendor_id: int) -> str:
    """Latest cached summary text for a vendor, or "" if never evaluated."""
    row = (
        db.query(VendorComplianceCache.summary)
        .filter(
            VendorComplianceCache.org_id == org_id,
            VendorComplianceCache.vendor_id == vendor_id,
        )
        .first()
    )
    return (row[0] or "") if row else ""
