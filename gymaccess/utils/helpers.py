import calendar
import math
from datetime import datetime, timedelta

from gymaccess.errors import ValidationError


def add_months(dt, months=1):
    """
    Shift a date/datetime by whole calendar months.

    The day is clamped to the last day of the target month, so
    Jan 31 + 1 month is Feb 28 (or 29).
    """
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def add_years(dt, years=1):
    return add_months(dt, 12 * years)


def round_minutes(delta):
    """Whole minutes in a timedelta, halves rounded up"""
    return int(math.floor(delta.total_seconds() / 60 + 0.5))


def ceil_days(delta):
    """Whole days in a timedelta, rounded up"""
    return math.ceil(delta.total_seconds() / timedelta(days=1).total_seconds())


def format_currency(amount, currency='$'):
    """Format amount as currency"""
    if amount is None:
        return f"{currency}0"
    return f"{currency}{float(amount):,.2f}"


def format_date(d, format='%a %b %d %Y'):
    """Format date"""
    if not d:
        return '-'
    if isinstance(d, str):
        return d
    return d.strftime(format)


def format_duration(minutes):
    """Minutes as '1h 30m' / '45m'"""
    if not minutes:
        return '0m'
    hours, mins = divmod(int(minutes), 60)
    if hours > 0:
        return f'{hours}h {mins}m'
    return f'{mins}m'


def pagination_args(request, default_per_page=50):
    """Get pagination arguments from request"""
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('limit', default_per_page, type=int)
    return max(page or 1, 1), max(min(per_page or default_per_page, 500), 1)


def pagination_meta(pagination):
    """Pagination block for a Flask-SQLAlchemy Pagination object"""
    return {
        'current_page': pagination.page,
        'total_pages': pagination.pages,
        'total_items': pagination.total,
        'items_per_page': pagination.per_page
    }


def parse_datetime(value, field):
    """ISO-8601 query value to datetime; blank is None"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f'Invalid date: {value}', field=field)
