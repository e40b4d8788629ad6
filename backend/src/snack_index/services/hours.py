"""Opening-hours interpretation over structured weekly periods.

Days are numbered 0=Sunday .. 6=Saturday and times are ``HHMM`` strings, the
encoding the place registry uses. Every function here is pure: the reference
instant is always passed in (or defaults to the local wall clock).
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from snack_index.models import HoursInfo, OpeningPeriod


MINUTES_PER_DAY = 24 * 60


def _weekday(now: datetime) -> int:
    # datetime.weekday() is Monday=0; the registry uses Sunday=0.
    return (now.weekday() + 1) % 7


def _minutes_of_day(now: datetime) -> int:
    return now.hour * 60 + now.minute


def parse_hhmm(value: str) -> int:
    """Minutes after midnight for an ``HHMM`` string."""
    value = value.strip().replace(":", "")
    if len(value) < 3 or not value.isdigit():
        raise ValueError(f"invalid HHMM time: {value!r}")
    return int(value[:-2]) * 60 + int(value[-2:])


def format_time_label(value: str) -> str:
    """12-hour label: "9 AM", "9:30 PM", "12 PM"."""
    minutes = parse_hhmm(value) % MINUTES_PER_DAY
    hour, minute = divmod(minutes, 60)
    suffix = "AM" if hour < 12 else "PM"
    display_hour = hour % 12 or 12
    if minute == 0:
        return f"{display_hour} {suffix}"
    return f"{display_hour}:{minute:02d} {suffix}"


def _is_always_open(periods: Sequence[OpeningPeriod]) -> bool:
    if len(periods) != 1:
        return False
    only = periods[0]
    return only.open_day == 0 and parse_hhmm(only.open_time) == 0 and only.close_time is None


def _is_within(period: OpeningPeriod, now_min: int) -> bool:
    open_min = parse_hhmm(period.open_time)
    if period.close_time is None:
        return now_min >= open_min
    close_min = parse_hhmm(period.close_time)
    close_day = period.open_day if period.close_day is None else period.close_day
    if close_day == period.open_day:
        return open_min <= now_min < close_min
    if close_min < open_min:
        return now_min >= open_min or now_min < close_min
    # Spans past midnight with a later close clock time; open for the rest of the day.
    return now_min >= open_min


def _has_closed_today(period: OpeningPeriod, now_min: int) -> bool:
    if period.close_time is None:
        return False
    close_day = period.open_day if period.close_day is None else period.close_day
    if close_day != period.open_day:
        return False
    return parse_hhmm(period.close_time) <= now_min


def todays_periods(periods: Iterable[OpeningPeriod], now: datetime) -> List[OpeningPeriod]:
    day = _weekday(now)
    today = [p for p in periods if p.open_day == day]
    return sorted(today, key=lambda p: parse_hhmm(p.open_time))


def format_today_hours(today: Sequence[OpeningPeriod]) -> Optional[str]:
    if not today:
        return None
    parts: list[str] = []
    for period in today:
        open_label = format_time_label(period.open_time)
        if period.close_time is None:
            parts.append(f"{open_label}+")
        else:
            parts.append(f"{open_label} - {format_time_label(period.close_time)}")
    return ", ".join(parts)


def interpret_hours(periods: Sequence[OpeningPeriod], now: Optional[datetime] = None) -> HoursInfo:
    """Open/closed state, close label and today's hours for a reference instant."""
    now = now or datetime.now()
    now_min = _minutes_of_day(now)
    period_list = list(periods)
    today = todays_periods(period_list, now)
    today_label = format_today_hours(today)

    if _is_always_open(period_list):
        return HoursInfo(is_open=True, close_time_label=None, today_hours_label=today_label, periods=period_list)

    for period in today:
        if _is_within(period, now_min):
            close_label = format_time_label(period.close_time) if period.close_time else None
            return HoursInfo(is_open=True, close_time_label=close_label, today_hours_label=today_label, periods=period_list)

    close_label = None
    for period in today:
        if period.close_time is not None and not _has_closed_today(period, now_min):
            close_label = format_time_label(period.close_time)
            break
    return HoursInfo(is_open=False, close_time_label=close_label, today_hours_label=today_label, periods=period_list)


def minutes_until_open(periods: Sequence[OpeningPeriod], now: Optional[datetime] = None) -> Optional[int]:
    """Minutes until the next opening within a 7-day lookahead, or None."""
    now = now or datetime.now()
    now_day = _weekday(now)
    now_min = _minutes_of_day(now)
    for offset in range(7):
        day = (now_day + offset) % 7
        waits = [
            parse_hhmm(p.open_time) + offset * MINUTES_PER_DAY - now_min
            for p in periods
            if p.open_day == day
        ]
        upcoming = [w for w in waits if w >= 0]
        if upcoming:
            return min(upcoming)
    return None


def format_minutes_until(minutes: int) -> str:
    if minutes <= 0:
        return "soon"
    if minutes < 60:
        return f"in {minutes} min"
    hours, rem = divmod(minutes, 60)
    if rem == 0:
        return f"in {hours} hr" if hours == 1 else f"in {hours} hrs"
    return f"in {hours} hr {rem} min"
