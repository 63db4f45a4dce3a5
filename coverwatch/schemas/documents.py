"""Types produced by the document rule engine and document intelligence."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RuleOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GTE = "gte"
    LTE = "lte"
    CONTAINS = "contains"


class UnknownOperatorPolicy(str, Enum):
    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


class RuleDetail(BaseModel):
    field_key: str
    operator: str
    expected_value: Any = None
    actual_value: Any = None


class RuleOutcome(BaseModel):
    rule_id: int
    field_key: str
    operator: str
    expected_value: Any = None
    severity: str
    detail: RuleDetail
    requirement_text: str = ""


class DocumentEvaluation(BaseModel):
    passing: list[RuleOutcome] = Field(default_factory=list)
    failing: list[RuleOutcome] = Field(default_factory=list)
    missing: list[RuleOutcome] = Field(default_factory=list)
    status: str = "unknown"  # pass, fail, unknown
    summary: str = ""


class Finding(BaseModel):
    rule_id: str
    type: str
    category: str
    severity: str = "medium"
    field: str | None = None
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
