from datetime import datetime, timedelta, timezone
from typing import Optional, overload


@overload
def to_utc(dt: None) -> None: ...


@overload
def to_utc(dt: datetime) -> datetime: ...


def to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetime has UTC tzinfo. Handles None gracefully."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    """Current time in the process' local timezone (tz-aware)."""
    return datetime.now().astimezone()


def end_of_trial(start: datetime, trial_days: int) -> datetime:
    """Last millisecond of the final trial day.

    Midnight of the start day, in the start's own timezone, plus
    ``trial_days + 1`` days minus one millisecond.
    """
    midnight = start.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=trial_days + 1) - timedelta(milliseconds=1)


def is_past(dt: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when ``dt`` is missing or not later than ``now``."""
    if dt is None:
        return True
    return to_utc(now or utc_now()) >= to_utc(dt)
