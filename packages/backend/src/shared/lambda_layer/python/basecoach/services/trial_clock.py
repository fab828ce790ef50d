"""
Trial clock: the one place that turns a trial end date into days left.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from basecoach.constants.subscription_tiers import (
    HEALTHY_PHASE_MIN_DAYS,
    MILESTONE_DAYS,
    TRIAL_DAYS,
)
from basecoach.models.subscription import DataIntegrityError, MilestoneKey, TrialPhase

_ONE_DAY_SECONDS = timedelta(days=1).total_seconds()


def as_utc(value: datetime) -> datetime:
    """Return a timezone-aware UTC datetime, naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    """
    Parse a stored ISO-8601 timestamp.

    Raises:
        DataIntegrityError: if the value cannot be parsed
    """
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        # fromisoformat only accepts a trailing Z from 3.11 on
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (TypeError, ValueError) as exc:
        raise DataIntegrityError(f"Invalid timestamp {value!r}: {exc}") from exc


def trial_end_from(start: datetime) -> datetime:
    return as_utc(start) + timedelta(days=TRIAL_DAYS)


def days_remaining(trial_ends_at: datetime, now: datetime) -> int:
    """
    Whole days left in a trial, rounded up and never negative.

    13.01 days left reads as 14, an end date in the past reads as 0.
    """
    delta = (as_utc(trial_ends_at) - as_utc(now)).total_seconds()
    return max(0, math.ceil(delta / _ONE_DAY_SECONDS))


def phase_for(days: int) -> TrialPhase:
    if days >= HEALTHY_PHASE_MIN_DAYS:
        return TrialPhase.HEALTHY
    if days >= 1:
        return TrialPhase.URGENT
    return TrialPhase.EXPIRED


def milestone_for(days: int) -> Optional[MilestoneKey]:
    """Milestones are exact values: day 5 is no milestone at all."""
    key = MILESTONE_DAYS.get(days)
    return MilestoneKey(key) if key else None
