"""
stage_classifier.py — Days-until-expiration → renewal urgency stage.

Pure functions, no I/O. The stage is recomputed from the expiration date
and the current time on every renewal cycle; a stored stage is only ever
an audit value.

Boundaries (days_left = floor((expiration - now) / 1 day)):
    > 90        → None (dormant)
    31 .. 90    → 90
    8 .. 30     → 30
    4 .. 7      → 7
    2 .. 3      → 3
    0 .. 1      → 1
    < 0         → 0 (expired)

Called by: renewal_service.py, renewal_email_planner.py
"""

import math
from datetime import date, datetime, time, timezone
from enum import IntEnum

from ..schemas.renewals import RenewalAction

SECONDS_PER_DAY = 86400


class Stage(IntEnum):
    DAYS_90 = 90
    DAYS_30 = 30
    DAYS_7 = 7
    DAYS_3 = 3
    DAYS_1 = 1
    EXPIRED = 0


STAGE_ACTIONS: dict[Stage, RenewalAction] = {
    Stage.DAYS_90: RenewalAction(severity="medium", code="renew_90d"),
    Stage.DAYS_30: RenewalAction(severity="high", code="renew_30d"),
    Stage.DAYS_7: RenewalAction(severity="high", code="renew_7d"),
    Stage.DAYS_3: RenewalAction(severity="high", code="renew_3d"),
    Stage.DAYS_1: RenewalAction(severity="critical", code="renew_1d"),
    Stage.EXPIRED: RenewalAction(severity="critical", code="renew_expired"),
}


def as_utc_datetime(value: date | datetime) -> datetime:
    """Dates mean midnight UTC; naive datetimes are taken as UTC."""
    if isinstance(value, datetime):
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def days_until(expiration: date | datetime, now: datetime | None = None) -> float:
    """Fractional days from now until expiration (negative once past)."""
    now = as_utc_datetime(now or datetime.now(timezone.utc))
    return (as_utc_datetime(expiration) - now).total_seconds() / SECONDS_PER_DAY


def days_left(expiration: date | datetime, now: datetime | None = None) -> int:
    return math.floor(days_until(expiration, now))


def classify_days(days: int) -> Stage | None:
    if days > 90:
        return None
    if days > 30:
        return Stage.DAYS_90
    if days > 7:
        return Stage.DAYS_30
    if days > 3:
        return Stage.DAYS_7
    if days > 1:
        return Stage.DAYS_3
    if days >= 0:
        return Stage.DAYS_1
    return Stage.EXPIRED


def classify(expiration: date | datetime | None, now: datetime | None = None) -> Stage | None:
    """Stage for an expiration date at `now`. No expiration date → None (skip)."""
    if expiration is None:
        return None
    return classify_days(days_left(expiration, now))


def describe_stage(stage: int | None) -> tuple[str, str]:
    """Human label and urgency used in notification copy."""
    labels = {
        Stage.EXPIRED: ("Expired", "max"),
        Stage.DAYS_1: ("1 Day Left", "very_high"),
        Stage.DAYS_3: ("3 Days Left", "high"),
        Stage.DAYS_7: ("7-Day Window", "medium_high"),
        Stage.DAYS_30: ("30-Day Window", "medium"),
        Stage.DAYS_90: ("90-Day Window", "low"),
    }
    if stage is None:
        return ("Upcoming", "low")
    return labels.get(stage, ("Upcoming", "low"))
