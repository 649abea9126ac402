import enum

from gymaccess import db
from gymaccess.clock import utcnow
from gymaccess.errors import InvalidSessionTransition
from gymaccess.utils.helpers import round_minutes, format_duration

AUTO_CHECKOUT_NOTE = 'Auto-checkout: Session exceeded 24 hours'


class SessionStatus(enum.Enum):
    CHECKED_IN = 'checked-in'
    CHECKED_OUT = 'checked-out'
    INCOMPLETE = 'incomplete'


class AttendanceSession(db.Model):
    """One check-in/check-out span for a member"""
    __tablename__ = 'attendance_sessions'

    id = db.Column(db.Integer, primary_key=True)
    member_pk = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=False)

    check_in_time = db.Column(db.DateTime, nullable=False, default=utcnow)
    check_out_time = db.Column(db.DateTime)
    # Minutes; 0 while the session is open
    duration = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(
        db.Enum(SessionStatus, values_callable=lambda e: [m.value for m in e],
                native_enum=False, length=20, validate_strings=True),
        nullable=False,
        default=SessionStatus.CHECKED_IN
    )

    device_id = db.Column(db.String(50))
    location = db.Column(db.String(200), default='Main Entrance')
    notes = db.Column(db.String(500))

    created_by = db.Column(db.String(64))
    updated_by = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, default=utcnow)

    # Indexes for faster queries
    __table_args__ = (
        db.Index('idx_session_member', 'member_pk', 'check_in_time'),
        db.Index('idx_session_status', 'status', 'check_in_time'),
    )

    def __repr__(self):
        return f'<AttendanceSession {self.member_pk} {self.status.value}>'

    @property
    def is_open(self):
        return self.status is SessionStatus.CHECKED_IN

    @property
    def formatted_duration(self):
        return format_duration(self.duration)

    def check_out(self, at, updated_by=None):
        """checked-in -> checked-out, freezing the duration"""
        if not self.is_open:
            raise InvalidSessionTransition(
                f'Session {self.id} is {self.status.value}, cannot check out'
            )
        self._close(at, SessionStatus.CHECKED_OUT, updated_by)

    def mark_incomplete(self, estimated_checkout, note=AUTO_CHECKOUT_NOTE, updated_by=None):
        """checked-in -> incomplete, for sessions nobody closed"""
        if not self.is_open:
            raise InvalidSessionTransition(
                f'Session {self.id} is {self.status.value}, cannot auto-close'
            )
        self._close(estimated_checkout, SessionStatus.INCOMPLETE, updated_by)
        self.append_note(note)

    def _close(self, at, status, updated_by):
        if at < self.check_in_time:
            raise InvalidSessionTransition('Check-out time is before check-in time')
        self.check_out_time = at
        self.duration = round_minutes(at - self.check_in_time)
        self.status = status
        self.updated_by = updated_by

    def append_note(self, note):
        self.notes = f'{self.notes} | {note}' if self.notes else note

    def to_dict(self):
        return {
            'id': self.id,
            'member_id': self.member.member_id if self.member else None,
            'check_in_time': self.check_in_time.isoformat(),
            'check_out_time': self.check_out_time.isoformat() if self.check_out_time else None,
            'duration': self.duration,
            'formatted_duration': self.formatted_duration,
            'status': self.status.value,
            'device_id': self.device_id,
            'location': self.location,
            'notes': self.notes
        }

    @classmethod
    def open_for(cls, member_pk):
        """The member's open session, if any"""
        return cls.query.filter_by(
            member_pk=member_pk,
            status=SessionStatus.CHECKED_IN
        ).order_by(cls.check_in_time.desc()).first()

    @classmethod
    def latest_for(cls, member_pk):
        return cls.query.filter_by(member_pk=member_pk).order_by(
            cls.check_in_time.desc(), cls.id.desc()
        ).first()
