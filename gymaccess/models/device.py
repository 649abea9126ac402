from gymaccess import db
from gymaccess.clock import utcnow
from gymaccess.config import DEVICE_ONLINE_WINDOW


class AttendanceDevice(db.Model):
    """Door controller - card reader, biometric terminal or turnstile"""
    __tablename__ = 'attendance_devices'

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.String(50), unique=True, nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    location = db.Column(db.String(200), nullable=False)

    # Type: 'entry', 'exit', 'both'
    type = db.Column(db.String(10), nullable=False, default='both')

    ip_address = db.Column(db.String(50))
    port = db.Column(db.Integer, default=5005)
    firmware = db.Column(db.String(50))

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_heartbeat = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow)
    created_by = db.Column(db.String(64))

    def __repr__(self):
        return f'<AttendanceDevice {self.device_id}>'

    def status(self, now=None):
        """'inactive', 'online' or 'offline'"""
        if not self.is_active:
            return 'inactive'
        now = now or utcnow()
        if self.last_heartbeat and now - self.last_heartbeat < DEVICE_ONLINE_WINDOW:
            return 'online'
        return 'offline'

    def touch(self, now=None):
        """Record a heartbeat"""
        self.last_heartbeat = now or utcnow()

    def to_dict(self, brief=False):
        data = {
            'id': self.id,
            'device_id': self.device_id,
            'name': self.name,
            'location': self.location,
        }
        if not brief:
            data.update({
                'type': self.type,
                'is_active': self.is_active,
                'status': self.status(),
                'last_heartbeat': self.last_heartbeat.isoformat() if self.last_heartbeat else None
            })
        return data

    @classmethod
    def find_by_device_id(cls, device_id):
        """Case-insensitive lookup"""
        if not device_id:
            return None
        return cls.query.filter_by(device_id=str(device_id).strip().upper()).first()
