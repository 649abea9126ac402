"""
Time sources.

Every component asks the application clock for "now" instead of reading the
wall clock, so reconciliation runs and gate decisions can be replayed in tests.
Times are naive UTC, matching what the models store.
"""
from datetime import datetime, timezone, time, timedelta
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context


class Clock:
    """Base time source"""

    def now(self):
        raise NotImplementedError


class SystemClock(Clock):
    """Wall-clock time, naive UTC"""

    def now(self):
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock(Clock):
    """Clock frozen at a given instant; tests move it explicitly"""

    def __init__(self, now):
        self._now = now

    def now(self):
        return self._now

    def set(self, now):
        self._now = now

    def advance(self, delta):
        self._now = self._now + delta
        return self._now


def get_clock():
    """Clock installed on the current application"""
    return current_app.extensions['clock']


def utcnow():
    """Current time from the app clock, wall clock outside an app context"""
    if has_app_context() and 'clock' in current_app.extensions:
        return get_clock().now()
    return SystemClock().now()


def local_tz(app=None):
    app = app or current_app
    return ZoneInfo(app.config.get('GYM_TIMEZONE', 'UTC'))


def to_local(dt, tz=None):
    """Naive UTC -> aware local datetime"""
    if dt is None:
        return None
    tz = tz or local_tz()
    return dt.replace(tzinfo=timezone.utc).astimezone(tz)


def day_bounds_utc(day, tz=None):
    """
    UTC boundaries of a local calendar day.

    Returns:
        (start, end) as naive UTC datetimes, end exclusive
    """
    tz = tz or local_tz()
    start_local = datetime.combine(day, time.min, tzinfo=tz)
    end_local = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return (
        start_local.astimezone(timezone.utc).replace(tzinfo=None),
        end_local.astimezone(timezone.utc).replace(tzinfo=None),
    )


def month_bounds_utc(now, tz=None):
    """UTC boundaries of the local calendar month containing `now`"""
    tz = tz or local_tz()
    local_now = to_local(now, tz)
    first = local_now.date().replace(day=1)
    if first.month == 12:
        next_first = first.replace(year=first.year + 1, month=1)
    else:
        next_first = first.replace(month=first.month + 1)
    start, _ = day_bounds_utc(first, tz)
    end, _ = day_bounds_utc(next_first, tz)
    return start, end
