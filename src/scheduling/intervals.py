from __future__ import annotations

from datetime import datetime, timedelta

# Pipeline placements land on 5-minute boundaries (8:00, 8:05, 8:10, ...)
INTERVAL_GRANULARITY_MIN = 5

# Push notifications go out this long before each interval boundary
NOTIFICATION_LEAD_TIME_S = 30


def end_of_day(moment: datetime) -> datetime:
    """23:59:59.999 on the calendar day of ``moment``."""
    return moment.replace(hour=23, minute=59, second=59, microsecond=999000)


def round_up_to_minute(moment: datetime) -> datetime:
    rounded = moment.replace(second=0, microsecond=0)
    if rounded < moment:
        rounded += timedelta(minutes=1)
    return rounded


def align_to_interval(moment: datetime, granularity_min: int = INTERVAL_GRANULARITY_MIN) -> datetime:
    aligned = moment.replace(second=0, microsecond=0)
    remainder = aligned.minute % granularity_min
    if remainder:
        aligned += timedelta(minutes=granularity_min - remainder)
    return aligned


def get_next_interval(now: datetime, granularity_min: int = INTERVAL_GRANULARITY_MIN) -> datetime:
    """Next interval boundary at or after ``now``, with seconds cleared."""
    base = now.replace(second=0, microsecond=0)
    remainder = base.minute % granularity_min
    if remainder == 0 and base == now:
        return base
    if remainder == 0:
        return base + timedelta(minutes=granularity_min)
    return base + timedelta(minutes=granularity_min - remainder)


def is_in_notification_window(
    now: datetime,
    lead_time_s: int = NOTIFICATION_LEAD_TIME_S,
    granularity_min: int = INTERVAL_GRANULARITY_MIN,
) -> bool:
    next_interval = get_next_interval(now, granularity_min)
    notify_at = next_interval - timedelta(seconds=lead_time_s)
    return notify_at <= now < next_interval
