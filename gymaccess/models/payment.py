import math

from sqlalchemy import Integer, cast, func

from gymaccess import db
from gymaccess.clock import utcnow

PAYMENT_ID_PREFIX = 'PAY'

PAYMENT_TYPES = ('membership_fee', 'registration_fee', 'personal_training', 'equipment_rental', 'other')
PAYMENT_METHODS = ('cash', 'credit_card', 'debit_card', 'bank_transfer', 'check', 'online', 'pending')
PAYMENT_STATUSES = ('pending', 'completed', 'failed', 'refunded', 'cancelled')


class Payment(db.Model):
    """Payment records - one billing event per row"""
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.String(20), unique=True, nullable=False, index=True)
    member_pk = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=False, index=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_type = db.Column(db.String(30), nullable=False, default='membership_fee')
    payment_method = db.Column(db.String(20), nullable=False, default='cash')
    # Status: pending, completed, failed, refunded, cancelled
    payment_status = db.Column(db.String(20), nullable=False, default='pending')
    transaction_id = db.Column(db.String(100))

    payment_date = db.Column(db.DateTime, default=utcnow)
    due_date = db.Column(db.DateTime, nullable=False)
    period_start = db.Column(db.DateTime, nullable=False)
    period_end = db.Column(db.DateTime, nullable=False)

    notes = db.Column(db.Text, default='')
    processed_by = db.Column(db.String(64))

    # Refund details
    refund_amount = db.Column(db.Numeric(10, 2), default=0)
    refund_date = db.Column(db.DateTime)
    refund_reason = db.Column(db.Text)
    refunded_by = db.Column(db.String(64))

    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.Index('idx_payment_member_type_due', 'member_pk', 'payment_type', 'due_date'),
    )

    def __repr__(self):
        return f'<Payment {self.payment_id} {self.payment_status}>'

    @property
    def is_completed(self):
        return self.payment_status == 'completed'

    def status_display(self, now=None):
        now = now or utcnow()
        if self.payment_status == 'completed':
            return 'Paid'
        if self.payment_status == 'pending' and self.due_date < now:
            return 'Overdue'
        return self.payment_status.capitalize()

    def days_overdue(self, now=None):
        if self.payment_status == 'completed':
            return 0
        days = math.ceil(((now or utcnow()) - self.due_date).total_seconds() / 86400)
        return days if days > 0 else 0

    def mark_completed(self, payment_date=None, transaction_id=None):
        self.payment_status = 'completed'
        self.payment_date = payment_date or utcnow()
        if transaction_id:
            self.transaction_id = transaction_id

    def mark_refunded(self, refund_amount, reason, refunded_by, now=None):
        self.payment_status = 'refunded'
        self.refund_amount = refund_amount
        self.refund_date = now or utcnow()
        self.refund_reason = reason
        self.refunded_by = refunded_by

    def append_note(self, note):
        self.notes = f'{self.notes} | {note}' if self.notes else note

    def to_dict(self):
        return {
            'payment_id': self.payment_id,
            'member_id': self.member.member_id if self.member else None,
            'amount': float(self.amount or 0),
            'payment_type': self.payment_type,
            'payment_method': self.payment_method,
            'payment_status': self.payment_status,
            'transaction_id': self.transaction_id,
            'payment_date': _iso(self.payment_date),
            'due_date': _iso(self.due_date),
            'period_covered': {
                'start_date': _iso(self.period_start),
                'end_date': _iso(self.period_end)
            },
            'notes': self.notes,
            'processed_by': self.processed_by,
            'refund_details': {
                'refund_amount': float(self.refund_amount or 0),
                'refund_date': _iso(self.refund_date),
                'refund_reason': self.refund_reason,
                'refunded_by': self.refunded_by
            } if self.payment_status == 'refunded' else None
        }

    @classmethod
    def find_by_payment_id(cls, payment_id):
        if not payment_id:
            return None
        return cls.query.filter_by(payment_id=str(payment_id).strip().upper()).first()

    @classmethod
    def membership_fee_exists(cls, member_pk, due_date):
        """Idempotence guard for generated monthly fees"""
        return db.session.query(
            cls.query.filter_by(
                member_pk=member_pk,
                payment_type='membership_fee',
                due_date=due_date
            ).exists()
        ).scalar()

    @classmethod
    def next_payment_id(cls):
        suffix = cast(func.substr(cls.payment_id, len(PAYMENT_ID_PREFIX) + 1), Integer)
        with db.session.no_autoflush:
            number = db.session.query(func.max(suffix)).filter(
                cls.payment_id.like(f'{PAYMENT_ID_PREFIX}%')
            ).scalar()
        return f'{PAYMENT_ID_PREFIX}{(number or 0) + 1:08d}'


def _iso(value):
    return value.isoformat() if value else None
