from gymaccess import db
from gymaccess.clock import utcnow
from gymaccess.utils.helpers import format_duration

ACCESS_TYPES = ('check-in', 'check-out')
ACCESS_METHODS = ('card', 'biometric', 'mobile', 'manual')


class AccessLog(db.Model):
    """Every door access attempt, granted or denied, plus manual entries"""
    __tablename__ = 'access_logs'

    id = db.Column(db.Integer, primary_key=True)
    # Null when the presented member or device ID matched nothing
    member_pk = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True)
    device_pk = db.Column(db.Integer, db.ForeignKey('attendance_devices.id'), nullable=True)

    # Type: 'check-in', 'check-out'
    type = db.Column(db.String(20), nullable=False, default='check-in')
    # Status: 'success', 'denied', 'error'
    status = db.Column(db.String(20), nullable=False, default='success')
    reason = db.Column(db.String(200))

    # Minutes, on check-out records
    duration = db.Column(db.Integer)

    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)
    # Method: 'card', 'biometric', 'mobile', 'manual'
    method = db.Column(db.String(20), nullable=False, default='card')
    location = db.Column(db.String(200))
    ip_address = db.Column(db.String(50))

    # Presented identifiers, kept for denied attempts that matched nothing
    presented_member_id = db.Column(db.String(50))
    presented_device_id = db.Column(db.String(50))

    # Null for automatic records
    recorded_by = db.Column(db.String(64))

    device = db.relationship('AttendanceDevice', backref=db.backref('access_logs', lazy='dynamic'))

    __table_args__ = (
        db.Index('idx_access_log_member', 'member_pk', 'timestamp'),
        db.Index('idx_access_log_device', 'device_pk', 'timestamp'),
        db.Index('idx_access_log_timestamp', 'timestamp'),
    )

    def __repr__(self):
        return f'<AccessLog {self.type} {self.status} {self.timestamp}>'

    @property
    def formatted_duration(self):
        if self.duration is None:
            return None
        return format_duration(self.duration)

    def to_dict(self):
        return {
            'id': self.id,
            'member': self.member.to_dict(brief=True) if self.member else None,
            'device': self.device.to_dict(brief=True) if self.device else None,
            'type': self.type,
            'status': self.status,
            'reason': self.reason,
            'duration': self.duration,
            'formatted_duration': self.formatted_duration,
            'timestamp': self.timestamp.isoformat(),
            'method': self.method,
            'location': self.location,
            'ip_address': self.ip_address,
            'presented_member_id': self.presented_member_id,
            'presented_device_id': self.presented_device_id,
            'recorded_by': self.recorded_by
        }

    @classmethod
    def last_for(cls, member_pk):
        return cls.query.filter_by(member_pk=member_pk).order_by(
            cls.timestamp.desc(), cls.id.desc()
        ).first()
