"""Alert identity and payload types."""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AlertKey(BaseModel):
    """(org, vendor, type, rule) — identifies at most one open alert."""
    model_config = ConfigDict(frozen=True)

    org_id: int
    vendor_id: int
    type: str
    rule_id: str | None = None
