from sqlalchemy import Integer, cast, event, func, inspect, select, update
from sqlalchemy.orm import Session

from gymaccess import db
from gymaccess.clock import utcnow
from gymaccess.services import payment_status
from gymaccess.utils.helpers import add_months, add_years
from gymaccess.config import MEMBERSHIP_TERM_YEARS

MEMBER_ID_PREFIX = 'GYM'
MEMBERSHIP_TYPES = ('basic', 'premium', 'vip')


class Member(db.Model):
    """Member model - identity, billing and door access state"""
    __tablename__ = 'members'

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.String(20), unique=True, nullable=False, index=True)

    # Basic info
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False, default='')
    email = db.Column(db.String(120), nullable=False, unique=True)
    phone = db.Column(db.String(20))

    # Membership
    membership_type = db.Column(db.String(20), default='basic')
    membership_start_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    membership_end_date = db.Column(db.DateTime)
    monthly_fee = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    # Billing: payment_status is derived, see _derive_payment_status below
    payment_status = db.Column(db.String(20), nullable=False, default=payment_status.PAID)
    last_payment_date = db.Column(db.DateTime)
    next_payment_due = db.Column(db.DateTime, index=True)

    # Access
    door_access_enabled = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    created_by = db.Column(db.String(64))

    # Relationships
    payments = db.relationship('Payment', backref='member', lazy='dynamic',
                               order_by='desc(Payment.payment_date)')
    sessions = db.relationship('AttendanceSession', backref='member', lazy='dynamic',
                               order_by='desc(AttendanceSession.check_in_time)')
    access_logs = db.relationship('AccessLog', backref='member', lazy='dynamic',
                                  order_by='desc(AccessLog.timestamp)')

    def __repr__(self):
        return f'<Member {self.member_id}>'

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'.strip()

    def apply_enrollment_defaults(self, start=None):
        """Fill the membership window and first due date from the start date"""
        start = start or self.membership_start_date or utcnow()
        self.membership_start_date = start
        if self.membership_end_date is None:
            self.membership_end_date = add_years(start, MEMBERSHIP_TERM_YEARS)
        if self.next_payment_due is None:
            self.next_payment_due = add_months(start, 1)

    def derived_payment_status(self, now=None):
        """What payment_status should be at `now`"""
        return payment_status.resolve(
            self.next_payment_due,
            self.last_payment_date,
            now or utcnow(),
            self.payment_status
        )

    def is_payment_overdue(self, now=None):
        """Unpaid and more than the grace period past the due date"""
        return payment_status.is_suspendable(
            self.next_payment_due,
            self.last_payment_date,
            now or utcnow()
        )

    def membership_expired(self, now=None):
        if self.membership_end_date is None:
            return False
        return self.membership_end_date < (now or utcnow())

    def membership_status(self, now=None):
        """'expired', 'payment_overdue' or 'active'"""
        now = now or utcnow()
        if self.membership_expired(now):
            return 'expired'
        if (self.next_payment_due and self.next_payment_due < now
                and self.payment_status != payment_status.PAID):
            return 'payment_overdue'
        return 'active'

    def disable_door_access(self):
        """Turn door access off. Returns False if it already was."""
        if not self.door_access_enabled:
            return False
        self.door_access_enabled = False
        return True

    def enable_door_access(self):
        if self.door_access_enabled:
            return False
        self.door_access_enabled = True
        return True

    def override_payment_status(self, status):
        """
        Set payment_status by hand for the next flush.

        The flush listener leaves the value alone once; any later write to
        the billing dates derives it again.
        """
        if status not in payment_status.PAYMENT_STATUSES:
            raise ValueError(f'Invalid payment status: {status}')
        self.payment_status = status
        self._payment_status_override = True

    def to_dict(self, brief=False):
        data = {
            'id': self.id,
            'member_id': self.member_id,
            'name': self.full_name,
            'membership_type': self.membership_type,
        }
        if brief:
            return data
        data.update({
            'email': self.email,
            'phone': self.phone,
            'membership_start_date': _iso(self.membership_start_date),
            'membership_end_date': _iso(self.membership_end_date),
            'monthly_fee': float(self.monthly_fee or 0),
            'payment_status': self.payment_status,
            'last_payment_date': _iso(self.last_payment_date),
            'next_payment_due': _iso(self.next_payment_due),
            'door_access_enabled': self.door_access_enabled,
            'is_active': self.is_active,
        })
        return data

    @classmethod
    def find_by_member_id(cls, member_id, for_update=False):
        """Case-insensitive lookup by the human-readable ID"""
        if not member_id:
            return None
        query = cls.query.filter(cls.member_id == str(member_id).strip().upper())
        if for_update:
            query = query.with_for_update()
        return query.first()

    @classmethod
    def lock(cls, pk):
        """Reload a member with a row lock held until commit/rollback"""
        return cls.query.filter(cls.id == pk).with_for_update().populate_existing().first()

    @classmethod
    def next_member_id(cls, session=None, offset=0):
        """Next sequential GYM###### identifier"""
        session = session or db.session
        # compare the numeric suffix, GYM1000000 sorts below GYM999999 as text
        suffix = cast(func.substr(cls.member_id, len(MEMBER_ID_PREFIX) + 1), Integer)
        with session.no_autoflush:
            number = session.query(func.max(suffix)).filter(
                cls.member_id.like(f'{MEMBER_ID_PREFIX}%')
            ).scalar()
        return f'{MEMBER_ID_PREFIX}{(number or 0) + 1 + offset:06d}'


def _iso(value):
    return value.isoformat() if value else None


def _billing_dates_changed(member):
    state = inspect(member)
    return (state.attrs.next_payment_due.history.has_changes()
            or state.attrs.last_payment_date.history.has_changes())


@event.listens_for(Session, 'before_flush')
def _derive_payment_status(session, flush_context, instances):
    """
    Keep Member.payment_status equal to the derived value.

    Runs for every ORM flush, so single saves, batch jobs and administrative
    edits all go through the same resolve() call.
    """
    now = None
    new_without_id = 0

    for obj in list(session.new) + list(session.dirty):
        if not isinstance(obj, Member):
            continue

        if obj in session.new and not obj.member_id:
            obj.member_id = Member.next_member_id(session, offset=new_without_id)
            new_without_id += 1
        elif obj.member_id:
            obj.member_id = obj.member_id.strip().upper()

        if getattr(obj, '_payment_status_override', False):
            obj._payment_status_override = False
            continue

        if obj in session.new or _billing_dates_changed(obj):
            now = now or utcnow()
            obj.payment_status = payment_status.resolve(
                obj.next_payment_due, obj.last_payment_date, now, obj.payment_status
            )


BILLING_DATE_COLUMNS = frozenset(('next_payment_due', 'last_payment_date'))
_SKIP_DERIVATION = 'skip_payment_status_derivation'


def _updated_keys(orm_execute_state):
    statement = orm_execute_state.statement
    keys = set()
    keys.update(getattr(statement, '_values', None) or ())
    keys.update(k for k, _ in getattr(statement, '_ordered_values', None) or ())

    params = orm_execute_state.parameters
    if isinstance(params, (list, tuple)):
        for row in params:
            keys.update(row)
    elif params:
        keys.update(params)
    return {getattr(k, 'key', k) for k in keys}


def _affected_member_pks(orm_execute_state):
    session = orm_execute_state.session
    statement = orm_execute_state.statement
    params = orm_execute_state.parameters

    if isinstance(params, (list, tuple)):
        # bulk UPDATE by primary key: one parameter dict per row
        if statement.whereclause is None:
            return [row['id'] for row in params if 'id' in row]
        params = None

    query = select(Member.id)
    if statement.whereclause is not None:
        query = query.where(statement.whereclause)
    return list(session.execute(query, params or None).scalars())


@event.listens_for(Session, 'do_orm_execute')
def _derive_payment_status_bulk(orm_execute_state):
    """
    Re-derive payment_status after bulk UPDATEs of the billing dates.

    Query.update() and session.execute(update(Member)) skip the flush, so the
    before_flush listener never sees them. The rows are picked before the
    statement runs, since its WHERE clause may test the columns it changes.
    """
    if not orm_execute_state.is_update:
        return None
    if orm_execute_state.execution_options.get(_SKIP_DERIVATION):
        return None
    table = getattr(orm_execute_state.statement, 'table', None)
    if getattr(table, 'name', None) != Member.__tablename__:
        return None
    if not BILLING_DATE_COLUMNS & _updated_keys(orm_execute_state):
        return None

    session = orm_execute_state.session
    pks = _affected_member_pks(orm_execute_state)
    result = orm_execute_state.invoke_statement()
    if not pks:
        return result

    now = utcnow()
    rows = session.execute(
        select(Member.id, Member.next_payment_due, Member.last_payment_date, Member.payment_status)
        .where(Member.id.in_(pks)),
        execution_options={_SKIP_DERIVATION: True}
    ).all()

    changed = {}
    for pk, next_due, last_paid, current in rows:
        derived = payment_status.resolve(next_due, last_paid, now, current)
        if derived != current:
            changed.setdefault(derived, []).append(pk)

    for status, ids in changed.items():
        session.execute(
            update(Member).where(Member.id.in_(ids)).values(payment_status=status),
            execution_options={_SKIP_DERIVATION: True}
        )
    return result
