"""Send-window calculator for business-hours-only sequences.

Days follow the 0 = Sunday ... 6 = Saturday convention used by the
dashboard. Hours are "HH:MM" in the sequence's timezone; the window is
[hours_start, hours_end). Minute-level precision, DST-safe.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def parse_hhmm(value: str) -> time:
    """Parse "HH:MM" into a time."""
    hours, minutes = value.split(":", 1)
    return time(hour=int(hours), minute=int(minutes))


def sunday_based_weekday(d: date) -> int:
    """Convert Python's Monday=0 weekday to Sunday=0."""
    return (d.weekday() + 1) % 7


def is_within_window(
    dt: datetime,
    *,
    days_of_week: list[int],
    hours_start: str,
    hours_end: str,
    tz_name: str,
) -> bool:
    """Check if an aware datetime falls inside the send window."""
    local = dt.astimezone(ZoneInfo(tz_name))
    if sunday_based_weekday(local.date()) not in days_of_week:
        return False
    now_time = local.time().replace(tzinfo=None)
    return parse_hhmm(hours_start) <= now_time < parse_hhmm(hours_end)


def next_window_start(
    dt: datetime,
    *,
    days_of_week: list[int],
    hours_start: str,
    hours_end: str,
    tz_name: str,
) -> datetime:
    """
    Get the earliest instant at or after dt that is inside the window.

    Returns dt unchanged when already inside; otherwise the window opening
    on the next allowed day (today included if it has not opened yet).
    The result is in UTC.
    """
    if not days_of_week:
        raise ValueError("days_of_week cannot be empty")

    if is_within_window(
        dt,
        days_of_week=days_of_week,
        hours_start=hours_start,
        hours_end=hours_end,
        tz_name=tz_name,
    ):
        return dt

    tz = ZoneInfo(tz_name)
    local = dt.astimezone(tz)
    start = parse_hhmm(hours_start)

    # Today (if not opened yet) plus a full week covers every allowed day
    for offset in range(8):
        day = local.date() + timedelta(days=offset)
        if sunday_based_weekday(day) not in days_of_week:
            continue
        opening = datetime.combine(day, start, tzinfo=tz)
        if opening > local:
            return opening.astimezone(timezone.utc)

    raise ValueError("No send window found within a week")
