"""
Centralized datetime and timezone utilities.

All "today" and "now" decisions (completion timestamps, default effective
dates, the backdating window) go through these functions so they agree on
the configured local timezone.
"""

from datetime import datetime, date, time, timedelta
from typing import Optional
import pytz

from config import settings


def get_local_tz() -> pytz.BaseTzInfo:
    """Get the configured local timezone."""
    return pytz.timezone(settings.timezone)


def get_local_now() -> datetime:
    """Get current time in local timezone (naive)."""
    local_tz = get_local_tz()
    return datetime.now(local_tz).replace(tzinfo=None)


def get_local_today() -> date:
    """Get today's date in the local timezone."""
    return get_local_now().date()


def to_naive_local(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert any datetime to naive local time for database storage.

    PostgreSQL TIMESTAMP WITHOUT TIME ZONE expects naive datetimes.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive datetime in local timezone, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        return dt.astimezone(get_local_tz()).replace(tzinfo=None)

    # Already naive, assume it's in local time
    return dt


def to_aware_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert naive local datetime to timezone-aware UTC.

    Args:
        dt: Naive datetime (assumed to be in local time)

    Returns:
        Timezone-aware datetime in UTC
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        return dt.astimezone(pytz.UTC)

    return get_local_tz().localize(dt).astimezone(pytz.UTC)


# ==================== REPORTING WEEK ====================

def week_start(day: date) -> date:
    """Monday of the reporting week containing `day`."""
    return day - timedelta(days=day.weekday())


def backdating_cutoff(
    now: datetime,
    cutoff_weekday: Optional[int] = None,
    cutoff_hour: Optional[int] = None,
) -> datetime:
    """Moment after which the previous reporting week is closed (Tuesday 09:00 by default)."""
    weekday = settings.backdating_cutoff_weekday if cutoff_weekday is None else cutoff_weekday
    hour = settings.backdating_cutoff_hour if cutoff_hour is None else cutoff_hour
    return datetime.combine(week_start(now.date()) + timedelta(days=weekday), time(hour=hour))


def check_backdating(
    effective_date: date,
    now: datetime,
    cutoff_weekday: Optional[int] = None,
    cutoff_hour: Optional[int] = None,
) -> Optional[str]:
    """
    Apply the backdating policy.

    Pure function of its inputs. `now` is naive local time (aware values are
    converted first).

    Rules:
    - no future effective dates;
    - the previous reporting week stays editable until the cutoff;
    - nothing older than the previous reporting week.

    Returns:
        None when allowed, otherwise the rejection reason
    """
    now = to_naive_local(now)
    if isinstance(effective_date, datetime):
        effective_date = to_naive_local(effective_date).date()

    today = now.date()
    current_week = week_start(today)
    previous_week = current_week - timedelta(days=7)

    if effective_date > today:
        return f"Effective date {effective_date.isoformat()} is in the future"

    if effective_date < previous_week:
        return (
            f"Effective date {effective_date.isoformat()} is before the previous "
            f"reporting week (starting {previous_week.isoformat()})"
        )

    if effective_date < current_week:
        cutoff = backdating_cutoff(now, cutoff_weekday, cutoff_hour)
        if now > cutoff:
            return (
                f"Backdating into the previous week closed at "
                f"{cutoff.strftime('%A %H:%M')} ({cutoff.date().isoformat()})"
            )

    return None


def is_backdating_allowed(
    effective_date: date,
    now: datetime,
    cutoff_weekday: Optional[int] = None,
    cutoff_hour: Optional[int] = None,
) -> bool:
    """True when `effective_date` may be recorded at `now`."""
    return check_backdating(effective_date, now, cutoff_weekday, cutoff_hour) is None
