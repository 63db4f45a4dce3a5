"""
test_document_rule_engine.py — Org field rules against extracted COI data.

Covers: dot-path lookup, each operator, unknown-operator policies,
        run_rules_on_extracted_document alerts + cache replacement.

Called by: pytest
Depends on: conftest.py (db_session, org, vendor, make_rule)
"""

from unittest.mock import patch

import pytest

from coverwatch.models import Alert, RequirementRule, VendorComplianceCache
from coverwatch.schemas.documents import UnknownOperatorPolicy
from coverwatch.services.document_rule_engine import (
    RULE_FAIL_ALERT_TYPE,
    evaluate_field_rule,
    get_compliance_summary,
    get_value_by_path,
    run_rules_on_extracted_document,
)

EXTRACTED = {
    "insured": {"name": "Summit Roofing LLC"},
    "coverage": {
        "gl": {"each_occurrence": "1,000,000", "aggregate": 2000000},
        "auto": {"combined_single": 500000},
    },
    "endorsements": ["CG 20 10", "CG 20 37"],
    "carrier": "Travelers Casualty",
    "limits": [{"amount": 100}, {"amount": 200}],
}


def _rule(field_key, operator, expected, rule_id=1):
    return RequirementRule(id=rule_id, org_id=1, field_key=field_key, operator=operator, expected_value=expected)


# ── Path lookup ──────────────────────────────────────────────────────


def test_get_value_by_path():
    assert get_value_by_path(EXTRACTED, "coverage.gl.aggregate") == 2000000
    assert get_value_by_path(EXTRACTED, "limits.1.amount") == 200
    assert get_value_by_path(EXTRACTED, "coverage.umbrella.each") is None
    assert get_value_by_path(EXTRACTED, "limits.9.amount") is None
    assert get_value_by_path(None, "a") is None
    assert get_value_by_path(EXTRACTED, "") is None


# ── Operators ────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "field_key, operator, expected, passed",
    [
        ("coverage.gl.each_occurrence", "equals", 1000000, True),
        ("insured.name", "equals", "Summit Roofing LLC", True),
        ("insured.name", "not_equals", "Other Co", True),
        ("coverage.gl.aggregate", "gte", 2000000, True),
        ("coverage.auto.combined_single", "gte", 1000000, False),
        ("coverage.auto.combined_single", "lte", 1000000, True),
        ("coverage.umbrella.each", "gte", 1, False),
        ("endorsements", "contains", "CG 20 10", True),
        ("endorsements", "contains", "CG 20 26", False),
        ("carrier", "contains", "travelers", True),
        ("coverage.gl.aggregate", "contains", "2", False),
    ],
)
def test_operators(field_key, operator, expected, passed):
    result, detail = evaluate_field_rule(_rule(field_key, operator, expected), EXTRACTED)
    assert result is passed
    assert detail.field_key == field_key


def test_missing_field_equals_none_passes():
    assert evaluate_field_rule(_rule("coverage.umbrella", "equals", None), EXTRACTED)[0] is True


def test_unknown_operator_fail_open_by_default():
    passed, detail = evaluate_field_rule(_rule("carrier", "regex", ".*"), EXTRACTED)
    assert passed is True
    assert detail.actual_value == "Travelers Casualty"


def test_unknown_operator_fail_closed():
    passed, _ = evaluate_field_rule(
        _rule("carrier", "regex", ".*"), EXTRACTED, UnknownOperatorPolicy.FAIL_CLOSED,
    )
    assert passed is False


# ── Full run ─────────────────────────────────────────────────────────


def test_run_returns_none_without_inputs(db_session, org, vendor):
    assert run_rules_on_extracted_document(db_session, org.id, vendor.id, None, None) is None
    assert run_rules_on_extracted_document(db_session, org.id, None, None, EXTRACTED) is None
    assert run_rules_on_extracted_document(db_session, None, vendor.id, None, EXTRACTED) is None


def test_empty_document_is_evaluated_not_skipped(db_session, org, vendor, make_rule):
    rule = make_rule("insured.name", "equals", "Summit Roofing LLC")

    result = run_rules_on_extracted_document(db_session, org.id, vendor.id, None, {})

    assert result is not None
    assert result.status == "fail"
    assert [o.rule_id for o in result.failing] == [rule.id]
    assert db_session.query(Alert).filter(Alert.type == RULE_FAIL_ALERT_TYPE).count() == 1


def test_run_with_no_rules_is_unknown(db_session, org, vendor):
    result = run_rules_on_extracted_document(db_session, org.id, vendor.id, None, EXTRACTED)
    assert result.status == "unknown"
    assert result.summary == "Document-based rules evaluated: 0 passing, 0 failing. Status: unknown."


def test_each_failing_rule_upserts_one_alert(db_session, org, vendor, make_rule):
    make_rule("coverage.gl.aggregate", "gte", 1000000, severity="medium")
    auto = make_rule("coverage.auto.combined_single", "gte", 1000000, severity="critical", text="Auto CSL must be $1M")
    umbrella = make_rule("coverage.umbrella.each", "gte", 5000000, severity=None)

    result = run_rules_on_extracted_document(db_session, org.id, vendor.id, 42, EXTRACTED)

    assert result.status == "fail"
    assert len(result.passing) == 1
    assert [o.rule_id for o in result.failing] == [auto.id, umbrella.id]

    alerts = {a.rule_id: a for a in db_session.query(Alert).filter(Alert.type == RULE_FAIL_ALERT_TYPE).all()}
    assert set(alerts) == {str(auto.id), str(umbrella.id)}
    assert alerts[str(auto.id)].severity == "critical"
    assert alerts[str(auto.id)].message == "Auto CSL must be $1M"
    assert alerts[str(auto.id)].category == "rule"
    assert alerts[str(auto.id)].meta["policyId"] == 42
    # Rules without a severity raise high alerts
    assert alerts[str(umbrella.id)].severity == "high"


def test_rerun_keeps_one_alert_per_rule(db_session, org, vendor, make_rule):
    make_rule("coverage.auto.combined_single", "gte", 1000000)

    run_rules_on_extracted_document(db_session, org.id, vendor.id, None, EXTRACTED)
    run_rules_on_extracted_document(db_session, org.id, vendor.id, None, EXTRACTED)

    assert db_session.query(Alert).count() == 1


def test_cache_row_replaced(db_session, org, vendor, make_rule):
    rule = make_rule("coverage.auto.combined_single", "gte", 1000000)
    run_rules_on_extracted_document(db_session, org.id, vendor.id, None, EXTRACTED)

    rule.expected_value = 100000
    db_session.commit()
    result = run_rules_on_extracted_document(db_session, org.id, vendor.id, None, EXTRACTED)

    rows = db_session.query(VendorComplianceCache).all()
    assert len(rows) == 1
    assert rows[0].status == "pass"
    assert rows[0].failing == []
    assert rows[0].passing[0]["rule_id"] == rule.id
    assert result.summary == "Document-based rules evaluated: 1 passing, 0 failing. Status: pass."
    assert get_compliance_summary(db_session, org.id, vendor.id) == result.summary


def test_inactive_rules_ignored(db_session, org, vendor, make_rule):
    rule = make_rule("coverage.auto.combined_single", "gte", 1000000)
    rule.is_active = False
    db_session.commit()

    result = run_rules_on_extracted_document(db_session, org.id, vendor.id, None, EXTRACTED)
    assert result.status == "unknown"


def test_unknown_operator_policy_from_settings(db_session, org, vendor, make_rule):
    make_rule("carrier", "matches", "Travelers")
    with patch("coverwatch.services.document_rule_engine.settings.unknown_rule_operator_policy", "fail_closed"):
        result = run_rules_on_extracted_document(db_session, org.id, vendor.id, None, EXTRACTED)
    assert result.status == "fail"


def test_compliance_summary_empty_when_never_run(db_session, org, vendor):
    assert get_compliance_summary(db_session, org.id, vendor.id) == ""
