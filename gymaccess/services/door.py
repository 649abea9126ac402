"""
Door access gate.

`DoorAccessGate.evaluate` answers "may this member pass this door now?".
Policy denials come back as AccessDecision objects; only infrastructure
failures raise (AccessSystemError). The module-level functions are the
operations the HTTP layer calls.
"""
import logging
import re

from sqlalchemy.exc import SQLAlchemyError

from gymaccess import db
from gymaccess.clock import utcnow
from gymaccess.errors import AccessSystemError, ValidationError, MemberNotFound
from gymaccess.models.access_log import AccessLog, ACCESS_TYPES, ACCESS_METHODS
from gymaccess.models.audit import AuditLog
from gymaccess.models.device import AttendanceDevice
from gymaccess.models.member import Member
from gymaccess.services.sessions import AttendanceSessionTracker, CHECK_IN, CHECK_OUT
from gymaccess.utils.helpers import pagination_meta, parse_datetime

logger = logging.getLogger(__name__)

GATE_ACTOR = 'system:door-gate'

# Denial reasons shown to members and operators
MEMBER_NOT_FOUND = 'Member not found'
MEMBER_INACTIVE = 'Member account is inactive'
ACCESS_DISABLED = 'Door access is disabled'
MEMBERSHIP_EXPIRED = 'Membership has expired'
PAYMENT_OVERDUE = 'Payment overdue - access suspended'
DEVICE_NOT_FOUND = 'Device not found'
DEVICE_INACTIVE = 'Device is inactive'
INVALID_MEMBER_ID = 'Invalid member ID'
INVALID_DEVICE_ID = 'Invalid device ID'
SYSTEM_ERROR = 'System error'

_IDENTIFIER = re.compile(r'^[A-Za-z0-9_-]{1,50}$')


class AccessDecision:
    """Outcome of a gate evaluation"""

    def __init__(self, access, reason=None, member=None, device=None):
        self.access = access
        self.reason = reason
        self.member = member
        self.device = device
        self.type = None
        self.duration = None
        self.log_id = None
        self.session = None

    def __repr__(self):
        return f'<AccessDecision access={self.access} reason={self.reason!r}>'

    @classmethod
    def grant(cls, member, device):
        return cls(True, member=member, device=device)

    @classmethod
    def deny(cls, reason, member=None, device=None):
        return cls(False, reason=reason, member=member, device=device)

    def to_dict(self):
        data = {'access': self.access}
        if self.reason:
            data['reason'] = self.reason
        if self.access:
            data['member'] = self.member.to_dict(brief=True)
            data['device'] = self.device.to_dict(brief=True)
        if self.type:
            data['type'] = self.type
        if self.duration is not None:
            data['duration'] = self.duration
        if self.log_id is not None:
            data['log_id'] = self.log_id
        return data


def _valid_identifier(value):
    return isinstance(value, str) and bool(_IDENTIFIER.match(value.strip()))


class DoorAccessGate:
    """Ordered access checks, short-circuiting on the first failure"""

    def __init__(self, tracker=None, now_func=utcnow):
        self.tracker = tracker or AttendanceSessionTracker(now_func)
        self._now = now_func

    def evaluate(self, member_id, device_id, now=None, apply_side_effects=True):
        """
        Decide whether `member_id` may pass through `device_id`.

        Args:
            member_id: human-readable member ID, any case
            device_id: door controller ID, any case
            now: reference time, defaults to the app clock
            apply_side_effects: suspend overdue members (False for dry runs)

        Returns:
            AccessDecision

        Raises:
            AccessSystemError: the datastore could not be read or written
        """
        now = now or self._now()
        try:
            return self._evaluate(member_id, device_id, now, apply_side_effects)
        except SQLAlchemyError as e:
            db.session.rollback()
            raise AccessSystemError(f'Datastore error during access evaluation: {e}') from e

    def _evaluate(self, member_id, device_id, now, apply_side_effects):
        if not _valid_identifier(member_id):
            return AccessDecision.deny(INVALID_MEMBER_ID)

        member = Member.find_by_member_id(member_id)
        if not member:
            return AccessDecision.deny(MEMBER_NOT_FOUND)

        if not member.is_active:
            return AccessDecision.deny(MEMBER_INACTIVE, member=member)

        if not member.door_access_enabled:
            return AccessDecision.deny(ACCESS_DISABLED, member=member)

        if member.membership_expired(now):
            return AccessDecision.deny(MEMBERSHIP_EXPIRED, member=member)

        if member.is_payment_overdue(now):
            if apply_side_effects:
                self.suspend(member, now)
            return AccessDecision.deny(PAYMENT_OVERDUE, member=member)

        if not _valid_identifier(device_id):
            return AccessDecision.deny(INVALID_DEVICE_ID, member=member)

        device = AttendanceDevice.find_by_device_id(device_id)
        if not device:
            return AccessDecision.deny(DEVICE_NOT_FOUND, member=member)

        if not device.is_active:
            return AccessDecision.deny(DEVICE_INACTIVE, member=member, device=device)

        return AccessDecision.grant(member, device)

    def suspend(self, member, now, actor=GATE_ACTOR):
        """Disable door access for an overdue member. No-op if already off."""
        locked = Member.lock(member.id)
        locked.payment_status = locked.derived_payment_status(now)
        if locked.disable_door_access():
            AuditLog.record(
                'door_access_suspended', 'member', locked.member_id, actor,
                {
                    'reason': PAYMENT_OVERDUE,
                    'next_payment_due': locked.next_payment_due.isoformat(),
                    'payment_status': locked.payment_status
                },
                now=now
            )
            logger.warning(f"Door access suspended for overdue member: {locked.member_id}")
        db.session.commit()

    def attempted_type(self, member):
        """Whether a denied attempt was trying to enter or leave"""
        if member is not None and self.tracker.open_session(member) is not None:
            return CHECK_OUT
        return CHECK_IN


def _log_attempt(decision, attempt_type, now, method, member_id=None, device_id=None,
                 ip_address=None, recorded_by=None, status=None, reason=None):
    device = decision.device
    log = AccessLog(
        member_pk=decision.member.id if decision.member else None,
        device_pk=device.id if device else None,
        type=attempt_type,
        status=status or ('success' if decision.access else 'denied'),
        reason=reason if reason is not None else decision.reason,
        duration=decision.duration,
        timestamp=now,
        method=method,
        location=device.location if device else 'Unknown',
        ip_address=ip_address,
        presented_member_id=str(member_id)[:50] if member_id is not None else None,
        presented_device_id=str(device_id)[:50] if device_id is not None else None,
        recorded_by=recorded_by
    )
    db.session.add(log)
    return log


def process_door_access(member_id, device_id, method='card', ip_address=None, gate=None):
    """
    Full door pipeline: evaluate, log, and check the member in or out.

    Every attempt is logged. A datastore failure or lock timeout denies
    with reason 'System error'; it never grants.
    """
    gate = gate or DoorAccessGate()
    now = gate._now()
    if method not in ACCESS_METHODS:
        method = 'card'

    try:
        decision = gate.evaluate(member_id, device_id, now=now)

        if not decision.access:
            log = _log_attempt(decision, gate.attempted_type(decision.member), now, method,
                               member_id, device_id, ip_address)
            db.session.commit()
            decision.log_id = log.id
            logger.info(f"Door access denied: {member_id} at {device_id} - {decision.reason}")
            return decision

        member, device = decision.member, decision.device
        with gate.tracker.serialized(member):
            try:
                transition = gate.tracker.record_access(member, device, now)
                decision.type = transition.type
                decision.duration = transition.duration
                decision.session = transition.session
                log = _log_attempt(decision, transition.type, now, method,
                                   member_id, device_id, ip_address)
                device.touch(now)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        decision.log_id = log.id
        logger.info(
            f"Door access granted: {member.member_id} - {decision.type} at {device.location}"
        )
        return decision

    except (AccessSystemError, SQLAlchemyError) as e:
        db.session.rollback()
        logger.error(f"Process door access error for {member_id} at {device_id}: {e}")
        return AccessDecision.deny(SYSTEM_ERROR)


def verify_member_access(member_id, device_id, gate=None):
    """Dry run of the gate: no session change, no log entry, no suspension"""
    gate = gate or DoorAccessGate()
    try:
        return gate.evaluate(member_id, device_id, apply_side_effects=False)
    except AccessSystemError as e:
        logger.error(f"Verify member access error for {member_id}: {e}")
        return AccessDecision.deny(SYSTEM_ERROR)


def get_member_current_status(member_id, tracker=None):
    """
    Current presence of a member.

    Returns:
        dict with member_id, name, status ('checked-in', 'checked-out' or
        'none') and last_activity (latest access log entry or None)

    Raises:
        MemberNotFound
    """
    member = Member.find_by_member_id(member_id)
    if not member:
        raise MemberNotFound(member_id)

    tracker = tracker or AttendanceSessionTracker()
    last = AccessLog.last_for(member.id)
    return {
        'member_id': member.member_id,
        'name': member.full_name,
        'status': tracker.current_status(member),
        'last_activity': last.to_dict() if last else None
    }


def get_attendance_logs(filters=None, page=1, limit=50):
    """
    Page through access logs, newest first.

    Filters: member_id, device_id, type, status, date_from, date_to.
    An unknown member or device yields an empty page.
    """
    filters = filters or {}
    query = AccessLog.query
    empty = False

    if filters.get('member_id'):
        member = Member.find_by_member_id(filters['member_id'])
        if member:
            query = query.filter(AccessLog.member_pk == member.id)
        else:
            empty = True

    if filters.get('device_id'):
        device = AttendanceDevice.find_by_device_id(filters['device_id'])
        if device:
            query = query.filter(AccessLog.device_pk == device.id)
        else:
            empty = True

    if filters.get('type'):
        query = query.filter(AccessLog.type == filters['type'])

    if filters.get('status'):
        query = query.filter(AccessLog.status == filters['status'])

    date_from = parse_datetime(filters.get('date_from'), 'date_from')
    date_to = parse_datetime(filters.get('date_to'), 'date_to')
    if date_from:
        query = query.filter(AccessLog.timestamp >= date_from)
    if date_to:
        query = query.filter(AccessLog.timestamp <= date_to)

    if empty:
        query = query.filter(db.false())

    logs = query.order_by(AccessLog.timestamp.desc(), AccessLog.id.desc()).paginate(
        page=page, per_page=limit, error_out=False
    )
    return {
        'logs': [log.to_dict() for log in logs.items],
        'pagination': pagination_meta(logs)
    }


def manual_attendance(member_id, type, device_id=None, reason=None, recorded_by=None,
                      ip_address=None, tracker=None):
    """
    Operator-recorded check-in or check-out.

    Skips the gate checks but not the session state machine: checking in a
    member who is inside, or out one who is not, is rejected.

    Returns:
        AccessLog entry

    Raises:
        ValidationError, MemberNotFound
    """
    if type not in ACCESS_TYPES:
        raise ValidationError(f'Invalid attendance type: {type}', field='type')
    if not recorded_by:
        raise ValidationError('recorded_by is required', field='recorded_by')
    if not _valid_identifier(member_id):
        raise ValidationError(INVALID_MEMBER_ID, field='member_id')

    member = Member.find_by_member_id(member_id)
    if not member:
        raise MemberNotFound(member_id)

    device = None
    if device_id:
        device = AttendanceDevice.find_by_device_id(device_id)
        if not device:
            raise ValidationError(DEVICE_NOT_FOUND, field='device_id')

    tracker = tracker or AttendanceSessionTracker()
    now = utcnow()

    with tracker.serialized(member):
        try:
            if type == CHECK_IN:
                transition = tracker.check_in(member, device, now, actor=recorded_by)
            else:
                transition = tracker.check_out(member, now, actor=recorded_by)

            decision = AccessDecision.grant(member, device)
            decision.duration = transition.duration
            log = _log_attempt(decision, transition.type, now, 'manual',
                               member.member_id, device_id, ip_address,
                               recorded_by=recorded_by, reason=reason or 'Manual entry')
            log.location = device.location if device else 'Manual Entry'
            AuditLog.record(
                'manual_attendance', 'member', member.member_id, recorded_by,
                {'type': transition.type, 'device_id': device.device_id if device else None,
                 'reason': reason or 'Manual entry'},
                now=now
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    logger.info(f"Manual {transition.type} recorded for {member.member_id} by {recorded_by}")
    return log
