"""
Payment status derivation.

The single source of truth for a member's `payment_status`. The member model
calls `resolve` from its flush listener, the door gate and the overdue sweep
call `is_overdue_beyond_grace`; nothing else decides these values.
"""
from gymaccess.config import PAYMENT_GRACE_PERIOD

PAID = 'paid'
UNPAID = 'unpaid'
OVERDUE = 'overdue'

PAYMENT_STATUSES = (PAID, UNPAID, OVERDUE)


def resolve(next_payment_due, last_payment_date, now, current=None):
    """
    Derive the payment status from billing dates.

    Args:
        next_payment_due: when the next fee falls due (None if unknown)
        last_payment_date: last completed payment (None if never paid)
        now: reference time
        current: stored status, returned unchanged when there is no due date

    Returns:
        'paid', 'unpaid' or 'overdue'
    """
    if next_payment_due is None:
        return current or PAID
    if last_payment_date is not None and last_payment_date >= next_payment_due:
        return PAID
    if now > next_payment_due:
        return OVERDUE
    return UNPAID


def is_overdue_beyond_grace(next_payment_due, now, grace=PAYMENT_GRACE_PERIOD):
    """True once `now` is strictly more than the grace period past the due date"""
    if next_payment_due is None:
        return False
    return now - next_payment_due > grace


def is_suspendable(next_payment_due, last_payment_date, now, grace=PAYMENT_GRACE_PERIOD):
    """Unpaid for the current cycle and past the grace period"""
    if resolve(next_payment_due, last_payment_date, now) == PAID:
        return False
    return is_overdue_beyond_grace(next_payment_due, now, grace)


def grace_cutoff(now, grace=PAYMENT_GRACE_PERIOD):
    """Due dates strictly before this instant are overdue beyond grace"""
    return now - grace
