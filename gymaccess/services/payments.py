"""
Payment processing and refunds.

Payments arrive already captured; this module records them and keeps the
member's billing dates in step. Payment status on the member is never set
here directly, the flush listener derives it from the dates.
"""
import logging
from decimal import Decimal

from gymaccess import db
from gymaccess.clock import utcnow
from gymaccess.errors import ValidationError, MemberNotFound, PaymentNotFound
from gymaccess.models.audit import AuditLog
from gymaccess.models.member import Member
from gymaccess.models.payment import Payment, PAYMENT_TYPES, PAYMENT_METHODS, PAYMENT_STATUSES
from gymaccess.services.members import apply_completed_payment, revert_refunded_payment
from gymaccess.utils.helpers import add_months, pagination_meta, parse_datetime

logger = logging.getLogger(__name__)


def _decimal(value, field):
    try:
        amount = Decimal(str(value))
    except (ArithmeticError, ValueError, TypeError):
        raise ValidationError(f'Invalid {field}: {value}', field=field)
    if amount < 0:
        raise ValidationError(f'{field} cannot be negative', field=field)
    return amount


def process_payment(data, processed_by):
    """
    Record a payment for a member.

    `data` keys: member_id, amount, payment_type, payment_method,
    payment_status (default 'completed'), transaction_id, payment_date,
    due_date, period_start, period_end, notes. Dates are datetimes.

    Returns:
        Payment

    Raises:
        ValidationError, MemberNotFound
    """
    if not processed_by:
        raise ValidationError('processed_by is required', field='processed_by')
    if data.get('amount') is None:
        raise ValidationError('amount is required', field='amount')
    amount = _decimal(data['amount'], 'amount')

    payment_type = data.get('payment_type') or 'membership_fee'
    if payment_type not in PAYMENT_TYPES:
        raise ValidationError(f'Invalid payment type: {payment_type}', field='payment_type')

    payment_method = data.get('payment_method') or 'cash'
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f'Invalid payment method: {payment_method}', field='payment_method')

    status = data.get('payment_status') or 'completed'
    if status not in ('pending', 'completed', 'failed'):
        raise ValidationError(f'Invalid payment status: {status}', field='payment_status')

    member = Member.find_by_member_id(data.get('member_id'))
    if not member:
        raise MemberNotFound(data.get('member_id'))

    now = utcnow()
    start = data.get('period_start') or now
    end = data.get('period_end') or add_months(start, 1)
    if end <= start:
        raise ValidationError('period_end must be after period_start', field='period_end')

    payment = Payment(
        payment_id=Payment.next_payment_id(),
        member_pk=member.id,
        amount=amount,
        payment_type=payment_type,
        payment_method=payment_method,
        payment_status=status,
        transaction_id=data.get('transaction_id'),
        payment_date=data.get('payment_date') or now,
        due_date=data.get('due_date') or start,
        period_start=start,
        period_end=end,
        notes=data.get('notes') or '',
        processed_by=processed_by,
        created_at=now
    )
    db.session.add(payment)

    if payment.is_completed:
        locked = Member.lock(member.id)
        apply_completed_payment(locked, payment)

    AuditLog.record('payment_processed', 'payment', payment.payment_id, processed_by, {
        'member_id': member.member_id,
        'amount': str(amount),
        'payment_type': payment_type,
        'payment_status': status
    }, now=now)
    db.session.commit()

    logger.info(f"Payment processed: {payment.payment_id} for member {member.member_id}")
    return payment


def complete_payment(payment_id, processed_by, payment_method=None, transaction_id=None,
                     payment_date=None):
    """Settle a pending payment (e.g. one generated by the monthly job)"""
    if not processed_by:
        raise ValidationError('processed_by is required', field='processed_by')

    payment = Payment.find_by_payment_id(payment_id)
    if not payment:
        raise PaymentNotFound(payment_id)
    if payment.payment_status != 'pending':
        raise ValidationError('Only pending payments can be completed', field='payment_id')
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(f'Invalid payment method: {payment_method}', field='payment_method')

    now = utcnow()
    if payment_method:
        payment.payment_method = payment_method
    payment.processed_by = processed_by
    payment.mark_completed(payment_date or now, transaction_id)

    locked = Member.lock(payment.member_pk)
    apply_completed_payment(locked, payment)

    AuditLog.record('payment_completed', 'payment', payment.payment_id, processed_by, {
        'member_id': locked.member_id,
        'transaction_id': transaction_id
    }, now=now)
    db.session.commit()

    logger.info(f"Payment completed: {payment.payment_id}")
    return payment


def process_refund(payment_id, refund_amount=None, reason=None, refunded_by=None):
    """
    Refund a completed payment, in full by default.

    A refunded membership fee rolls the member's billing dates back, which
    usually makes the member unpaid or overdue again.

    Raises:
        ValidationError, PaymentNotFound
    """
    if not refunded_by:
        raise ValidationError('refunded_by is required', field='refunded_by')

    payment = Payment.find_by_payment_id(payment_id)
    if not payment:
        raise PaymentNotFound(payment_id)

    if payment.payment_status != 'completed':
        raise ValidationError('Only completed payments can be refunded', field='payment_id')

    amount = payment.amount if refund_amount is None else _decimal(refund_amount, 'refund_amount')
    if amount > payment.amount:
        raise ValidationError('Refund amount cannot exceed original payment amount',
                              field='refund_amount')

    now = utcnow()
    payment.mark_refunded(amount, reason, refunded_by, now)

    locked = Member.lock(payment.member_pk)
    revert_refunded_payment(locked, payment)

    AuditLog.record('payment_refunded', 'payment', payment.payment_id, refunded_by, {
        'member_id': locked.member_id,
        'refund_amount': str(amount),
        'reason': reason
    }, now=now)
    db.session.commit()

    logger.info(f"Payment refunded: {payment.payment_id}")
    return payment


def get_member_payment_history(member_id, page=1, limit=20):
    """Payments for one member, newest first, with totals"""
    member = Member.find_by_member_id(member_id)
    if not member:
        raise MemberNotFound(member_id)

    payments = member.payments.paginate(page=page, per_page=limit, error_out=False)

    totals = dict(
        db.session.query(Payment.payment_status, db.func.sum(Payment.amount))
        .filter(Payment.member_pk == member.id)
        .group_by(Payment.payment_status)
        .all()
    )
    refunded = db.session.query(db.func.sum(Payment.refund_amount)).filter(
        Payment.member_pk == member.id,
        Payment.payment_status == 'refunded'
    ).scalar()

    return {
        'member': member.to_dict(brief=True),
        'payments': [p.to_dict() for p in payments.items],
        'pagination': pagination_meta(payments),
        'summary': {
            'total_paid': float(totals.get('completed') or 0),
            'total_pending': float(totals.get('pending') or 0),
            'total_refunded': float(refunded or 0)
        }
    }


def list_payments(filters=None, page=1, limit=20):
    """
    Page through all payments, newest first.

    Filters: member_id, payment_method, payment_status, payment_type,
    date_from, date_to (on payment_date). An unknown member yields an
    empty page.
    """
    filters = filters or {}
    query = Payment.query
    empty = False

    if filters.get('member_id'):
        member = Member.find_by_member_id(filters['member_id'])
        if member:
            query = query.filter(Payment.member_pk == member.id)
        else:
            empty = True

    for field, column, allowed in (
        ('payment_method', Payment.payment_method, PAYMENT_METHODS),
        ('payment_status', Payment.payment_status, PAYMENT_STATUSES),
        ('payment_type', Payment.payment_type, PAYMENT_TYPES),
    ):
        value = filters.get(field)
        if not value:
            continue
        if value not in allowed:
            raise ValidationError(f'Invalid {field.replace("_", " ")}: {value}', field=field)
        query = query.filter(column == value)

    query = _payment_date_range(query, filters.get('date_from'), filters.get('date_to'))

    if empty:
        query = query.filter(db.false())

    payments = query.order_by(
        Payment.payment_date.desc(), Payment.created_at.desc(), Payment.id.desc()
    ).paginate(page=page, per_page=limit, error_out=False)
    return {
        'payments': [p.to_dict() for p in payments.items],
        'pagination': pagination_meta(payments)
    }


def payment_stats(date_from=None, date_to=None):
    """
    Revenue figures over an optional payment_date range.

    Totals count completed payments only; the breakdowns by status, method
    and type cover every payment in the range.
    """
    def breakdown(column):
        query = db.session.query(column, db.func.count(Payment.id), db.func.sum(Payment.amount))
        rows = _payment_date_range(query, date_from, date_to).group_by(column).all()
        return {
            key: {'count': count, 'total_amount': float(total or 0)}
            for key, count, total in rows
        }

    completed = _payment_date_range(
        db.session.query(db.func.count(Payment.id), db.func.sum(Payment.amount)),
        date_from, date_to
    ).filter(Payment.payment_status == 'completed').one()
    count, revenue = completed[0], Decimal(str(completed[1] or 0))
    average = (revenue / count).quantize(Decimal('0.01')) if count else Decimal('0')

    return {
        'by_status': breakdown(Payment.payment_status),
        'by_method': breakdown(Payment.payment_method),
        'by_type': breakdown(Payment.payment_type),
        'totals': {
            'total_revenue': float(revenue),
            'total_payments': count,
            'average_payment': float(average)
        }
    }


def _payment_date_range(query, date_from, date_to):
    date_from = parse_datetime(date_from, 'date_from')
    date_to = parse_datetime(date_to, 'date_to')
    if date_from:
        query = query.filter(Payment.payment_date >= date_from)
    if date_to:
        query = query.filter(Payment.payment_date <= date_to)
    return query
