"""Pure half-open interval helpers used by slot listing and booking validation.

All datetimes are naive and share one implicit timezone.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, Optional, Tuple

Window = Tuple[datetime, datetime]


def windows_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Return True when [a_start, a_end) and [b_start, b_end) intersect.

    Touching windows (one ends exactly when the other starts) do not overlap.
    """
    return a_start < b_end and b_start < a_end


def find_conflict(start: datetime, end: datetime, windows: Iterable[Window]) -> Optional[Window]:
    for existing_start, existing_end in windows:
        if windows_overlap(start, end, existing_start, existing_end):
            return existing_start, existing_end
    return None


def day_bounds(day: date) -> Window:
    start_of_day = datetime.combine(day, time.min)
    end_of_day = datetime.combine(day, time.max)
    return start_of_day, end_of_day


def generate_slot_windows(
    day: date,
    duration_minutes: int,
    workday_start: time,
    workday_end: time,
    step_minutes: int,
) -> Iterator[Window]:
    """Yield candidate [start, end) windows for one working day.

    Starts are enumerated every ``step_minutes`` from ``workday_start`` while the
    start is before ``workday_end``. Candidates that would end after
    ``workday_end`` are skipped entirely.
    """
    if duration_minutes <= 0 or step_minutes <= 0:
        return
    open_at = datetime.combine(day, workday_start)
    close_at = datetime.combine(day, workday_end)
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)

    cursor = open_at
    while cursor < close_at:
        slot_end = cursor + duration
        if slot_end <= close_at:
            yield cursor, slot_end
        cursor += step
