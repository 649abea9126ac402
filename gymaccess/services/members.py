"""
Member administration: enrolment, payment-status override, door access
toggles and deactivation. Every change is audited with the operator ID.
"""
import logging
from datetime import timedelta

from gymaccess import db
from gymaccess.clock import utcnow
from gymaccess.errors import ValidationError, MemberNotFound
from gymaccess.models.audit import AuditLog
from gymaccess.models.member import Member, MEMBERSHIP_TYPES
from gymaccess.models.payment import Payment
from gymaccess.services import payment_status
from gymaccess.utils.helpers import ceil_days

logger = logging.getLogger(__name__)

# A payment date entered by hand covers this long
MANUAL_PAYMENT_PERIOD = timedelta(days=30)


def _get_member(member_id, for_update=False):
    member = Member.find_by_member_id(member_id, for_update=for_update)
    if not member:
        raise MemberNotFound(member_id)
    return member


def _require_actor(actor, field='performed_by'):
    if not actor:
        raise ValidationError(f'{field} is required', field=field)


def enroll_member(data, created_by):
    """
    Create a member.

    `data` keys: first_name, last_name, email, phone, membership_type,
    monthly_fee, membership_start_date (datetime, optional).
    The member ID, membership end date and first due date are assigned here.
    """
    _require_actor(created_by, 'created_by')

    email = (data.get('email') or '').strip().lower()
    if not email:
        raise ValidationError('email is required', field='email')
    if not data.get('first_name'):
        raise ValidationError('first_name is required', field='first_name')

    membership_type = data.get('membership_type') or 'basic'
    if membership_type not in MEMBERSHIP_TYPES:
        raise ValidationError(f'Invalid membership type: {membership_type}', field='membership_type')

    monthly_fee = data.get('monthly_fee') or 0
    if monthly_fee < 0:
        raise ValidationError('monthly_fee cannot be negative', field='monthly_fee')

    if Member.query.filter_by(email=email).first():
        raise ValidationError('Email already registered', field='email')

    now = utcnow()
    member = Member(
        first_name=data['first_name'].strip(),
        last_name=(data.get('last_name') or '').strip(),
        email=email,
        phone=data.get('phone'),
        membership_type=membership_type,
        monthly_fee=monthly_fee,
        notes=data.get('notes'),
        created_by=created_by,
        created_at=now
    )
    member.apply_enrollment_defaults(data.get('membership_start_date') or now)
    db.session.add(member)
    db.session.flush()

    AuditLog.record('member_enrolled', 'member', member.member_id, created_by, {
        'membership_type': membership_type,
        'next_payment_due': member.next_payment_due.isoformat()
    }, now=now)
    db.session.commit()

    logger.info(f"Member enrolled: {member.member_id} ({member.full_name}) by {created_by}")
    return member


def update_payment_status(member_id, new_status, payment_date=None, performed_by=None):
    """
    Administrative override of a member's payment status.

    With `payment_date`, also records the payment: last_payment_date is set
    to it and next_payment_due moves 30 days later. The status given here
    is kept as-is for this write; later billing changes derive it again.
    """
    if new_status not in payment_status.PAYMENT_STATUSES:
        raise ValidationError(
            'payment_status must be one of: ' + ', '.join(payment_status.PAYMENT_STATUSES),
            field='payment_status'
        )
    _require_actor(performed_by)

    member = _get_member(member_id, for_update=True)
    previous = member.payment_status
    now = utcnow()

    if payment_date is not None:
        member.last_payment_date = payment_date
        member.next_payment_due = payment_date + MANUAL_PAYMENT_PERIOD

    member.override_payment_status(new_status)
    AuditLog.record('payment_status_override', 'member', member.member_id, performed_by, {
        'from': previous,
        'to': new_status,
        'payment_date': payment_date.isoformat() if payment_date else None
    }, now=now)
    db.session.commit()

    logger.info(f"Payment status updated for member: {member.member_id} - {new_status}")
    return member


def set_door_access(member_id, enabled, performed_by, reason=None):
    """Turn door access on or off by hand. Returns the member."""
    _require_actor(performed_by)
    member = _get_member(member_id, for_update=True)

    changed = member.enable_door_access() if enabled else member.disable_door_access()
    if changed:
        AuditLog.record(
            'door_access_enabled' if enabled else 'door_access_disabled',
            'member', member.member_id, performed_by, {'reason': reason}
        )
        logger.info(
            f"Door access {'enabled' if enabled else 'disabled'} for {member.member_id} "
            f"by {performed_by}"
        )
    db.session.commit()
    return member


def deactivate_member(member_id, performed_by, reason=None):
    """Soft delete: the record stays, the gate refuses it"""
    _require_actor(performed_by)
    member = _get_member(member_id, for_update=True)

    if member.is_active:
        member.is_active = False
        member.disable_door_access()
        AuditLog.record('member_deactivated', 'member', member.member_id, performed_by,
                        {'reason': reason})
        logger.info(f"Member deactivated: {member.member_id} by {performed_by}")
    db.session.commit()
    return member


def get_overdue_members(now=None):
    """
    Active members unpaid for more than the grace period, longest overdue
    first. This is the set the overdue sweep suspends.
    """
    now = now or utcnow()
    members = Member.query.filter(
        Member.is_active.is_(True),
        Member.payment_status != payment_status.PAID,
        Member.next_payment_due < payment_status.grace_cutoff(now)
    ).order_by(Member.next_payment_due, Member.id).all()

    overdue = []
    for member in members:
        if not member.is_payment_overdue(now):
            continue
        data = member.to_dict()
        data['days_overdue'] = ceil_days(now - member.next_payment_due)
        overdue.append(data)
    return overdue


def apply_completed_payment(member, payment):
    """
    Advance the member's billing dates for a completed membership fee.

    Door access is not re-enabled here; that stays an operator decision.
    The caller commits.
    """
    if payment.payment_type != 'membership_fee':
        return
    if member.last_payment_date is None or payment.payment_date > member.last_payment_date:
        member.last_payment_date = payment.payment_date
    if member.next_payment_due is None or payment.period_end > member.next_payment_due:
        member.next_payment_due = payment.period_end


def revert_refunded_payment(member, payment):
    """
    Undo apply_completed_payment for a refunded membership fee.
    The caller commits.
    """
    if payment.payment_type != 'membership_fee':
        return

    previous = Payment.query.filter(
        Payment.member_pk == member.id,
        Payment.id != payment.id,
        Payment.payment_type == 'membership_fee',
        Payment.payment_status == 'completed'
    ).order_by(Payment.payment_date.desc()).first()

    member.last_payment_date = previous.payment_date if previous else None
    if member.next_payment_due is None or payment.period_start < member.next_payment_due:
        member.next_payment_due = payment.period_start
