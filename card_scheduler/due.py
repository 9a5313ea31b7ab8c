"""
Due detection: is a schedule due now, and when does it fire next
"""

from datetime import datetime, time as dt_time, timedelta
from typing import Iterable, List, Optional

from .models import Schedule, ScheduledTime, as_local

MATCH_WINDOW_MINUTES = 1
DEDUP_WINDOW = timedelta(seconds=60)

DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def weekday_index(value: datetime) -> int:
    """Weekday with 0 = Sunday ... 6 = Saturday"""
    return value.isoweekday() % 7


def is_due(schedule: Schedule, now: datetime) -> bool:
    """
    Decide whether a schedule should fire at `now`.

    A schedule is due when it is enabled, today is one of its days, the
    wall-clock hour matches and the minute is within the +/-1 match window,
    and it has not been triggered in the last 60 seconds.
    """
    if not schedule.is_enabled:
        return False

    now = as_local(now)
    if weekday_index(now) not in schedule.days_of_week:
        return False

    scheduled = schedule.scheduled_time
    if now.hour != scheduled.hour or abs(now.minute - scheduled.minute) > MATCH_WINDOW_MINUTES:
        return False

    # Dedup guard: a schedule can stay inside the match window across polls
    if schedule.last_triggered is not None and now - schedule.last_triggered < DEDUP_WINDOW:
        return False

    return True


def _candidates(schedule: Schedule, now: datetime, days: int) -> Iterable[datetime]:
    # Wall-clock time on each local date, so a DST change keeps the hour
    at = dt_time(schedule.scheduled_time.hour, schedule.scheduled_time.minute)
    for offset in range(days + 1):
        candidate = datetime.combine(now.date() + timedelta(days=offset), at).astimezone()
        if weekday_index(candidate) in schedule.days_of_week and candidate > now:
            yield candidate


def next_execution(schedule: Schedule, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Earliest fire time strictly after `now`.

    Scans today and the following seven days so that a schedule whose only
    weekday is today, at a time already passed, resolves to next week.
    Returns None when the schedule has no days.
    """
    now = as_local(now or datetime.now())
    return next(iter(_candidates(schedule, now, 7)), None)


def upcoming_occurrences(schedule: Schedule, now: Optional[datetime] = None,
                         horizon_days: int = 7) -> List[datetime]:
    """All fire times in (now, now + horizon_days], in order"""
    now = as_local(now or datetime.now())
    limit = now + timedelta(days=horizon_days)
    return [c for c in _candidates(schedule, now, horizon_days) if c <= limit]


def format_time(scheduled_time: ScheduledTime) -> str:
    """12-hour display form, e.g. 8:05 AM"""
    hour = scheduled_time.hour % 12 or 12
    suffix = "AM" if scheduled_time.hour < 12 else "PM"
    return f"{hour}:{scheduled_time.minute:02d} {suffix}"


def format_days(days: List[int]) -> str:
    days = sorted(set(days))
    if len(days) == 7:
        return "Every day"
    if days == [1, 2, 3, 4, 5]:
        return "Weekdays"
    if days == [0, 6]:
        return "Weekends"
    return ", ".join(DAY_NAMES[d] for d in days)
