"""
Deadline Calculator: outer 10-day bound and per-stage SLA hours.

Everything here is a pure function of the appeal record and a clock value.
Deadlines are queries only; an overdue appeal stays in its current state
until a reviewer or the overdue monitor acts on it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ..models import Appeal, StageKey


# Hour budget per stage
STAGE_HOUR_BUDGETS: dict[int, int] = {
    2: 1,     # Admin review
    3: 1,     # Documentation
    4: 24,    # Forward to department
    5: 72,    # Department review
    6: 120,   # President review
    10: 24,   # Final processing
}

DEFAULT_STAGE_HOURS = 24

APPROACHING_WINDOW_HOURS = 24

# Stage number -> timestamp key recorded when that stage is reached
STAGE_ENTRY_KEYS: dict[int, StageKey] = {
    1: StageKey.SUBMITTED,
    2: StageKey.ADMIN_REVIEW,
    3: StageKey.DOCUMENTED,
    4: StageKey.FORWARDED_TO_DEPT,
    5: StageKey.DEPT_REVIEW,
    6: StageKey.PRESIDENT_DECISION,
    10: StageKey.COMPLETED,
}

_KEY_ORDER = list(StageKey)


@dataclass
class StageTimeRemaining:
    """Time left in the current stage."""
    stage: int
    deadline: datetime
    hours_remaining: float  # Clamped at zero
    is_overdue: bool


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def stage_hour_budget(stage: int) -> int:
    return STAGE_HOUR_BUDGETS.get(stage, DEFAULT_STAGE_HOURS)


def outer_deadline(submitted_at: datetime, window_days: int = 10) -> datetime:
    return submitted_at + timedelta(days=window_days)


def stage_entry_timestamp(appeal: Appeal, stage: int) -> datetime | None:
    """
    When the appeal entered ``stage``.

    Uses the stage's own timestamp when recorded, otherwise the latest
    earlier timestamp: a stage is entered the moment the previous one ends
    (stage 6 is entered when the department review is forwarded, before the
    president's decision is stamped).
    """
    key = STAGE_ENTRY_KEYS.get(stage)
    if key is None:
        return None

    own = appeal.stage_timestamp(key)
    if own is not None:
        return own

    for earlier in reversed(_KEY_ORDER[:_KEY_ORDER.index(key)]):
        stamped = appeal.stage_timestamp(earlier)
        if stamped is not None:
            return stamped
    return None


def stage_deadline(appeal: Appeal, stage: int | None = None) -> datetime | None:
    """Entry timestamp of ``stage`` (default: current stage) plus its hour budget."""
    stage = stage if stage is not None else appeal.current_stage
    entered = stage_entry_timestamp(appeal, stage)
    if entered is None:
        return None
    return entered + timedelta(hours=stage_hour_budget(stage))


def hours_remaining(appeal: Appeal, now: datetime | None = None) -> float:
    """Hours until the outer deadline; negative once it has passed."""
    return (appeal.deadline - _now(now)).total_seconds() / 3600


def is_overdue(appeal: Appeal, now: datetime | None = None) -> bool:
    if appeal.deadline is None:
        return False
    return _now(now) > appeal.deadline


def is_deadline_approaching(appeal: Appeal, now: datetime | None = None) -> bool:
    """True only while 0 < hours remaining < 24. Past deadlines are ``is_overdue``."""
    if appeal.deadline is None:
        return False
    remaining = hours_remaining(appeal, now)
    return 0 < remaining < APPROACHING_WINDOW_HOURS


def is_stage_overdue(
    appeal: Appeal,
    stage: int | None = None,
    now: datetime | None = None,
) -> bool:
    deadline = stage_deadline(appeal, stage)
    if deadline is None:
        return False
    return _now(now) > deadline


def stage_time_remaining(
    appeal: Appeal,
    now: datetime | None = None,
) -> StageTimeRemaining | None:
    """Deadline view of the current stage, or None before the stage has an entry time."""
    stage = appeal.current_stage
    deadline = stage_deadline(appeal, stage)
    if deadline is None:
        return None

    remaining = (deadline - _now(now)).total_seconds() / 3600
    return StageTimeRemaining(
        stage=stage,
        deadline=deadline,
        hours_remaining=max(0.0, remaining),
        is_overdue=remaining < 0,
    )
