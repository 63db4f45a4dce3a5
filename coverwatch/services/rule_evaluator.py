"""Generic condition/action rule evaluator for flat COI fact records.

Design rules:
  - Conditions are AND-ed in order; evaluation stops at the first false one
  - All conditions true → the rule's configured action (pass/warn/fail)
  - Any condition false → FAIL by default (historical behaviour), or
    NOT_APPLICABLE when the caller passes mode=UnmetMode.NOT_APPLICABLE
  - Aggregate verdict precedence is fail > warn > pass, order-independent

Facts use the camelCase keys produced by COI extraction:
  expirationDate, policyType, limit, generalLiabilityLimit, autoLimit,
  workCompLimit, ...

Called by: document intake, compliance scoring
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from ..schemas.rules import (
    Action,
    ActionType,
    Condition,
    ConditionType,
    Rule,
    RuleResult,
    RuleSummary,
    UnmetMode,
    Verdict,
    WeightedRuleResult,
)
from .stage_classifier import days_until

DEFAULT_SEVERITY_WEIGHTS = {"high": 1.0, "medium": 0.7, "low": 0.4}

LIMIT_FIELDS = ("generalLiabilityLimit", "autoLimit", "workCompLimit")


# ── Condition predicates ─────────────────────────────────────────────────


def _expires_within(facts: dict[str, Any], days: Any, now: datetime) -> bool:
    expiration = facts.get("expirationDate")
    if not expiration:
        return False
    if isinstance(expiration, str):
        try:
            expiration = datetime.fromisoformat(expiration)
        except ValueError:
            logger.warning("Unparseable expirationDate in facts: {}", expiration)
            return False
    return days_until(expiration, now) <= float(days)


def _limits_missing(facts: dict[str, Any]) -> bool:
    return any(not facts.get(f) for f in LIMIT_FIELDS)


def _limit_below(facts: dict[str, Any], threshold: Any) -> bool:
    try:
        return float(facts.get("limit") or 0) < float(threshold)
    except (TypeError, ValueError):
        return False


def _any_field_empty(facts: dict[str, Any]) -> bool:
    # Empty lists and dicts are values, not gaps
    return any(v is None or v is False or v == "" or v == 0 for v in facts.values())


def evaluate_condition(condition: Condition, facts: dict[str, Any], now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    ctype = condition.type
    if ctype is ConditionType.EXPIRES_IN_DAYS:
        return _expires_within(facts, condition.value, now)
    if ctype is ConditionType.LIMITS_MISSING:
        return _limits_missing(facts)
    if ctype is ConditionType.POLICY_TYPE:
        return facts.get("policyType") == condition.value
    if ctype is ConditionType.LIMIT_BELOW:
        return _limit_below(facts, condition.value)
    if ctype is ConditionType.ANY_FIELD_EMPTY:
        return _any_field_empty(facts)
    raise ValueError(f"Unhandled condition type: {ctype}")


# ── Rule evaluation ──────────────────────────────────────────────────────


def evaluate_rule(
    rule: Rule,
    facts: dict[str, Any],
    now: datetime | None = None,
    *,
    mode: UnmetMode = UnmetMode.FAIL,
) -> RuleResult:
    """Evaluate one rule against a fact record."""
    passed = True
    for condition in rule.conditions:
        if not evaluate_condition(condition, facts, now):
            passed = False
            break

    if passed:
        result = Verdict(rule.action.type.value)
    elif mode is UnmetMode.NOT_APPLICABLE:
        result = Verdict.NOT_APPLICABLE
    else:
        result = Verdict.FAIL

    return RuleResult(
        rule_id=rule.id,
        rule_name=rule.name,
        result=result,
        label=rule.action.label,
        passed=passed,
    )


def evaluate_all(
    rules: Iterable[Rule],
    facts: dict[str, Any],
    now: datetime | None = None,
    *,
    mode: UnmetMode = UnmetMode.FAIL,
) -> list[RuleResult]:
    return [evaluate_rule(r, facts, now, mode=mode) for r in rules]


def aggregate_verdict(results: Iterable[RuleResult | Verdict]) -> Verdict:
    """Overall verdict for one subject: fail > warn > pass.

    NOT_APPLICABLE results do not count; a subject with nothing applicable passes.
    """
    seen = {r.result if isinstance(r, RuleResult) else Verdict(r) for r in results}
    if Verdict.FAIL in seen:
        return Verdict.FAIL
    if Verdict.WARN in seen:
        return Verdict.WARN
    return Verdict.PASS


def evaluate_with_summary(
    rules: Iterable[Rule],
    facts: dict[str, Any],
    severity_weights_by_group: dict[str, dict[str, float]] | None = None,
    now: datetime | None = None,
) -> tuple[list[WeightedRuleResult], RuleSummary]:
    """Evaluate all rules and score compliance 0-100, weighted by severity.

    Fails cost their full weight, warns half. An empty rule set scores 100.
    """
    weights_map = severity_weights_by_group or {}
    enriched: list[WeightedRuleResult] = []

    for rule in rules:
        severity = (rule.severity or "medium").lower()
        group_weights = weights_map.get(rule.group_id) or weights_map.get("default") or DEFAULT_SEVERITY_WEIGHTS
        weight = group_weights.get(severity, DEFAULT_SEVERITY_WEIGHTS.get(severity, 1.0))

        base = evaluate_rule(rule, facts, now)
        enriched.append(
            WeightedRuleResult(
                **base.model_dump(),
                group_id=rule.group_id,
                severity=severity,
                severity_weight=weight,
            )
        )

    total_weight = sum(r.severity_weight for r in enriched)
    failed_weight = sum(r.severity_weight for r in enriched if r.result is Verdict.FAIL)
    warn_weight = sum(r.severity_weight for r in enriched if r.result is Verdict.WARN)

    score = 100
    if total_weight > 0:
        penalty = (failed_weight / total_weight) * 100 + (warn_weight / total_weight) * 50
        score = max(0, round(100 - penalty))

    return enriched, RuleSummary(
        total_weight=total_weight,
        failed_weight=failed_weight,
        warn_weight=warn_weight,
        score=score,
    )


# ── Default rule set ─────────────────────────────────────────────────────


def default_rules() -> list[Rule]:
    """Starter rules applied to organizations that have not configured their own."""
    return [
        Rule(
            id="exp_30_warn",
            name="Policy expires within 30 days",
            conditions=[Condition(id="c_exp_30", type=ConditionType.EXPIRES_IN_DAYS, value=30)],
            action=Action(id="a_exp_30", type=ActionType.WARN, label="Expiring soon"),
        ),
        Rule(
            id="exp_0_fail",
            name="Policy expired",
            conditions=[Condition(id="c_exp_0", type=ConditionType.EXPIRES_IN_DAYS, value=0)],
            action=Action(id="a_exp_0", type=ActionType.FAIL, label="Expired"),
            severity="high",
        ),
        Rule(
            id="limits_missing_fail",
            name="Required limits missing",
            conditions=[Condition(id="c_limits_missing", type=ConditionType.LIMITS_MISSING)],
            action=Action(id="a_limits_missing", type=ActionType.FAIL, label="Missing limits"),
            severity="high",
        ),
        Rule(
            id="any_field_empty_warn",
            name="Important fields incomplete",
            conditions=[Condition(id="c_any_empty", type=ConditionType.ANY_FIELD_EMPTY)],
            action=Action(id="a_any_empty", type=ActionType.WARN, label="Data incomplete"),
            severity="low",
        ),
    ]
