"""
Test configuration: an in-memory app with a frozen clock and a notifier
that records instead of sending.
"""
import itertools
import sys
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from gymaccess import create_app, db as _db  # noqa: E402
from gymaccess.clock import FixedClock  # noqa: E402
from gymaccess.models import (  # noqa: E402
    Member, AttendanceDevice, AttendanceSession, SessionStatus
)
from gymaccess.services.notifier import Notifier, NotificationResult  # noqa: E402

# 17:00 in Asia/Karachi
NOW = datetime(2024, 3, 15, 12, 0, 0)

DOOR_HEADERS = {'X-API-Key': 'test-door-key'}
ADMIN_HEADERS = {'X-API-Key': 'test-admin-key'}


class RecordingNotifier(Notifier):
    """Keeps every message in memory"""

    def __init__(self):
        self.sms = []
        self.emails = []

    def send_sms(self, phone, message):
        self.sms.append((phone, message))
        return NotificationResult(True, message_id=f'sms-{len(self.sms)}')

    def send_email(self, to, subject, html):
        self.emails.append((to, subject, html))
        return NotificationResult(True, message_id=f'email-{len(self.emails)}')


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(clock, notifier):
    app = create_app('testing', clock=clock, notifier=notifier)
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_member(db):
    """
    Member factory. Defaults to an active member whose next fee is due in
    ten days and who has never paid.
    """
    counter = itertools.count(1)

    def _make(**overrides):
        n = next(counter)
        data = {
            'first_name': 'Ayesha',
            'last_name': f'Malik{n}',
            'email': f'member{n}@fitclub.pk',
            'phone': f'+9230000{n:05d}',
            'membership_type': 'basic',
            'monthly_fee': Decimal('50.00'),
            'membership_start_date': NOW - timedelta(days=60),
            'membership_end_date': NOW + timedelta(days=300),
            'next_payment_due': NOW + timedelta(days=10),
        }
        data.update(overrides)
        member = Member(**data)
        db.session.add(member)
        db.session.commit()
        return member

    return _make


@pytest.fixture
def make_device(db):
    counter = itertools.count(1)

    def _make(**overrides):
        n = next(counter)
        data = {
            'device_id': f'DOOR-{n}',
            'name': f'Door {n}',
            'location': 'Main Entrance',
            'ip_address': f'192.168.1.{100 + n}',
        }
        data.update(overrides)
        device = AttendanceDevice(**data)
        db.session.add(device)
        db.session.commit()
        return device

    return _make


@pytest.fixture
def make_session(db):
    """Attendance session factory; open unless check_out_time is given"""

    def _make(member, check_in_time, check_out_time=None, status=None):
        session = AttendanceSession(
            member_pk=member.id,
            check_in_time=check_in_time,
            status=status or SessionStatus.CHECKED_IN,
            location='Main Entrance'
        )
        if check_out_time is not None:
            session.check_out(check_out_time)
        db.session.add(session)
        db.session.commit()
        return session

    return _make


@pytest.fixture
def device(make_device):
    return make_device()
