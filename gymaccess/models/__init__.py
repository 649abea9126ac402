# Models package
from .member import Member
from .payment import Payment
from .attendance import AttendanceSession, SessionStatus
from .device import AttendanceDevice
from .access_log import AccessLog
from .audit import AuditLog
