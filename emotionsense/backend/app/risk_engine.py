from __future__ import annotations

import logging
import os
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

EMOTIONS = ["Happy", "Sad", "Angry", "Fear", "Neutral"]
NEGATIVE_EMOTIONS = frozenset({"Sad", "Angry", "Fear"})

SAFE = "safe"
WARNING = "warning"
CRITICAL = "critical"
ALERT_LEVELS = [SAFE, WARNING, CRITICAL]

CRITICAL_PERCENT = 60.0
WARNING_PERCENT = 40.0
CRITICAL_STREAK_DAYS = 5
WARNING_STREAK_DAYS = 3

PERIODS = {"daily", "weekly", "monthly"}


def resolve_timezone(name: Optional[str] = None) -> tzinfo:
    tz_name = (name or os.getenv("EMOTIONSENSE_TIMEZONE") or "UTC").strip()
    if tz_name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", tz_name)
        return timezone.utc


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_key(value: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar date of ``value`` in ``tz``; naive timestamps are taken as UTC."""
    return as_utc(value).astimezone(tz or resolve_timezone()).date()


def level_rank(level: str) -> int:
    return ALERT_LEVELS.index(level)


def is_negative(label: Optional[str]) -> bool:
    return label in NEGATIVE_EMOTIONS


def count_negative(entries: Iterable) -> int:
    return sum(1 for entry in entries if is_negative(entry.label))


def negative_ratio(entries: Sequence) -> float:
    if not entries:
        return 0.0
    return count_negative(entries) * 100 / len(entries)


def negative_percentage(entries: Sequence) -> int:
    # half-up rounding; the ratio is never negative
    return int(negative_ratio(entries) + 0.5)


def sort_newest_first(entries: Iterable) -> List:
    return sorted(entries, key=lambda entry: as_utc(entry.created_at), reverse=True)


def consecutive_negative_days(entries: Iterable, tz: Optional[tzinfo] = None) -> int:
    tz = tz or resolve_timezone()
    streak = 0
    seen = set()
    for entry in sort_newest_first(entries):
        key = day_key(entry.created_at, tz)
        if key in seen:
            continue
        seen.add(key)
        if not is_negative(entry.label):
            break
        streak += 1
    return streak


def classify_level(percent: float, streak: int) -> str:
    if percent > CRITICAL_PERCENT or streak >= CRITICAL_STREAK_DAYS:
        return CRITICAL
    if percent >= WARNING_PERCENT or streak >= WARNING_STREAK_DAYS:
        return WARNING
    return SAFE


def calculate_alert_level(entries: Sequence, tz: Optional[tzinfo] = None) -> str:
    if not entries:
        return SAFE
    return classify_level(negative_ratio(entries), consecutive_negative_days(entries, tz))


def is_override_valid(override, entries: Iterable) -> bool:
    if override is None:
        return False
    issued_at = as_utc(override.issued_at)
    for entry in entries:
        if is_negative(entry.label) and as_utc(entry.created_at) > issued_at:
            logger.debug("Override issued at %s invalidated by entry at %s", issued_at, entry.created_at)
            return False
    return True


def effective_alert_level(entries: Sequence, override, tz: Optional[tzinfo] = None) -> str:
    system_level = calculate_alert_level(entries, tz)
    if system_level == SAFE:
        return SAFE
    if is_override_valid(override, entries):
        return SAFE
    return system_level


def filter_entries_by_period(
    entries: Iterable,
    period: str,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> List:
    if period not in PERIODS:
        raise ValueError(f"Unknown period: {period}")
    now = as_utc(now or datetime.now(timezone.utc))
    if period == "daily":
        local_now = now.astimezone(tz or resolve_timezone())
        cutoff = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    elif period == "weekly":
        cutoff = now - timedelta(days=7)
    else:
        cutoff = now - timedelta(days=30)
    return [entry for entry in entries if as_utc(entry.created_at) >= cutoff]
