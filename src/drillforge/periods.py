"""Split a date range into weekly, biweekly or monthly buckets.

generation walks backward from the end date, so the most recent bucket is
always a full one and only the oldest gets clamped to the requested start.
the list is reversed at the end so callers see oldest first.

keys are handed out while walking backward and are *not* renumbered after
the reverse: the oldest bucket carries the highest index. existing
consumers look periods up by key, so this stays as is.
"""

from datetime import date, timedelta

from drillforge.models.period import Granularity, TimePeriod

MAX_PERIODS = 53

MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

ONE_DAY = timedelta(days=1)


def generate_time_periods(
    start: date,
    end: date,
    granularity: Granularity | str,
    today: date | None = None,
) -> list[TimePeriod]:
    """Bucket [start, end] into at most 53 contiguous periods, oldest first.

    Args:
        start: First day of the range (inclusive).
        end: Last day of the range (inclusive).
        granularity: weekly, biweekly or monthly.
        today: Used only to decide whether monthly labels need a year.
            Defaults to the real current date.

    Returns:
        Periods with "YYYY-MM-DD 00:00:00" / "YYYY-MM-DD 23:59:59" bounds.
    """
    granularity = Granularity(granularity)
    current_year = (today or date.today()).year

    periods: list[TimePeriod] = []
    current_end = end

    while current_end >= start:
        if granularity is Granularity.WEEKLY:
            current_start = current_end - timedelta(days=6)
        elif granularity is Granularity.BIWEEKLY:
            # half months: 1-14 and 15-end, whatever the month length
            day = 15 if current_end.day >= 15 else 1
            current_start = current_end.replace(day=day)
        else:
            current_start = current_end.replace(day=1)

        if current_start < start:
            current_start = start

        periods.append(
            TimePeriod(
                key=f"period_{len(periods)}",
                label=_label(current_start, current_end, granularity, current_year),
                start_date=f"{current_start.isoformat()} 00:00:00",
                end_date=f"{current_end.isoformat()} 23:59:59",
            )
        )

        if len(periods) >= MAX_PERIODS:
            break

        # every bucket starts on a boundary, so the previous one always ends
        # the day before - the 14th, the last of the month, or a week back
        current_end = current_start - ONE_DAY

    periods.reverse()
    return periods


def _label(start: date, end: date, granularity: Granularity, current_year: int) -> str:
    if granularity is Granularity.MONTHLY:
        name = MONTHS[start.month - 1]
        if start.year != current_year:
            return f"{name} {start.year}"
        return name

    start_month, end_month = MONTHS[start.month - 1], MONTHS[end.month - 1]
    if start_month == end_month:
        return f"{start_month} {start.day}-{end.day}"
    return f"{start_month} {start.day} - {end_month} {end.day}"


class TimePeriodGenerator:
    """Holds a fixed "today" so labels stay stable across a request."""

    def __init__(self, today: date | None = None) -> None:
        self.today = today

    def generate(
        self, start: date, end: date, granularity: Granularity | str
    ) -> list[TimePeriod]:
        return generate_time_periods(start, end, granularity, today=self.today)
