"""Rule, condition and verdict types for the generic rule evaluator.

Condition and action types are enums, so a rule carrying an unknown
condition type fails at construction with a ValidationError instead of
silently evaluating to false at runtime.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ConditionType(str, Enum):
    EXPIRES_IN_DAYS = "expires_in_days"
    LIMITS_MISSING = "limits_missing"
    POLICY_TYPE = "policy_type"
    LIMIT_BELOW = "limit_below"
    ANY_FIELD_EMPTY = "any_field_empty"


class ActionType(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class Verdict(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    NOT_APPLICABLE = "not_applicable"


class UnmetMode(str, Enum):
    """What a rule reports when one of its conditions does not hold.

    FAIL is the historical behaviour: the rule is reported as failing
    regardless of its configured action. NOT_APPLICABLE reports the rule
    as not applying to the subject.
    """
    FAIL = "fail"
    NOT_APPLICABLE = "not_applicable"


class Condition(BaseModel):
    id: str | None = None
    type: ConditionType
    value: Any = None


class Action(BaseModel):
    id: str | None = None
    type: ActionType = ActionType.PASS
    label: str | None = None


class Rule(BaseModel):
    id: str
    name: str
    conditions: list[Condition] = Field(default_factory=list)
    action: Action = Field(default_factory=Action)
    severity: str = "medium"
    group_id: str = "default"


class RuleResult(BaseModel):
    rule_id: str
    rule_name: str
    result: Verdict
    label: str | None = None
    passed: bool


class WeightedRuleResult(RuleResult):
    group_id: str
    severity: str
    severity_weight: float


class RuleSummary(BaseModel):
    total_weight: float
    failed_weight: float
    warn_weight: float
    score: int  # 0-100, higher is more compliant
