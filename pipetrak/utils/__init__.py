"""Utility modules for the milestone engine."""

from .datetime_utils import (
    get_local_tz,
    get_local_now,
    get_local_today,
    to_naive_local,
    to_aware_utc,
    week_start,
    check_backdating,
    is_backdating_allowed,
)

__all__ = [
    "get_local_tz",
    "get_local_now",
    "get_local_today",
    "to_naive_local",
    "to_aware_utc",
    "week_start",
    "check_backdating",
    "is_backdating_allowed",
]
