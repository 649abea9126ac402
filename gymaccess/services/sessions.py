"""
Attendance session tracking.

Per member the lifecycle is none -> checked-in -> checked-out, with
checked-in -> incomplete when a session is left open past SESSION_TIMEOUT.
Closed sessions are terminal; the next grant opens a new one.
"""
import logging
from collections import namedtuple
from contextlib import contextmanager

from sqlalchemy import case, func

from gymaccess import db
from gymaccess.clock import utcnow, day_bounds_utc, local_tz
from gymaccess.config import SESSION_TIMEOUT, AUTO_CHECKOUT_ESTIMATE
from gymaccess.errors import ValidationError
from gymaccess.models.attendance import AttendanceSession, SessionStatus, AUTO_CHECKOUT_NOTE
from gymaccess.models.audit import AuditLog
from gymaccess.models.member import Member
from gymaccess.services.locks import member_lock

logger = logging.getLogger(__name__)

CHECK_IN = 'check-in'
CHECK_OUT = 'check-out'

STATUS_NONE = 'none'

Transition = namedtuple('Transition', ['type', 'session', 'duration'])


class AttendanceSessionTracker:
    """Owns open/closed attendance sessions"""

    def __init__(self, now_func=utcnow):
        self._now = now_func

    @contextmanager
    def serialized(self, member, timeout=None):
        """
        Critical section for one member's session transitions.

        Holds the in-process member lock and the member row lock; the caller
        commits (or rolls back) before leaving the block.
        """
        with member_lock(member.id, timeout=timeout):
            Member.lock(member.id)
            yield member

    def open_session(self, member):
        return AttendanceSession.open_for(member.id)

    def last_session(self, member):
        return AttendanceSession.latest_for(member.id)

    def current_status(self, member):
        """'checked-in', 'checked-out' or 'none'"""
        last = self.last_session(member)
        if last is None:
            return STATUS_NONE
        if last.is_open:
            return SessionStatus.CHECKED_IN.value
        return SessionStatus.CHECKED_OUT.value

    def record_access(self, member, device=None, now=None, actor=None):
        """
        Apply a granted access event: close the open session or open a new one.

        Must run inside `serialized(member)`.

        Returns:
            Transition(type, session, duration)
        """
        now = now or self._now()
        last = self.last_session(member)
        if last is not None and last.is_open:
            return self.check_out(member, now, session=last, actor=actor)
        return self.check_in(member, device, now, actor=actor)

    def check_in(self, member, device=None, now=None, actor=None):
        """none/closed -> checked-in. Must run inside `serialized(member)`."""
        now = now or self._now()
        if self.open_session(member) is not None:
            raise ValidationError(f'Member {member.member_id} is already checked in', field='type')

        session = AttendanceSession(
            member_pk=member.id,
            check_in_time=now,
            status=SessionStatus.CHECKED_IN,
            device_id=device.device_id if device else None,
            location=device.location if device else 'Manual Entry',
            created_by=actor,
            created_at=now
        )
        db.session.add(session)
        return Transition(CHECK_IN, session, None)

    def check_out(self, member, now=None, session=None, actor=None):
        """checked-in -> checked-out. Must run inside `serialized(member)`."""
        now = now or self._now()
        session = session or self.open_session(member)
        if session is None or not session.is_open:
            raise ValidationError(f'Member {member.member_id} is not checked in', field='type')

        session.check_out(now, updated_by=actor)
        return Transition(CHECK_OUT, session, session.duration)

    def auto_close_abandoned(self, now=None, actor='system:attendance-cleanup'):
        """
        Force-close sessions open longer than SESSION_TIMEOUT.

        The checkout time is an estimate (check-in + AUTO_CHECKOUT_ESTIMATE),
        not the time the session was found. Each session is its own unit of
        work.

        Returns:
            (closed, failed)
        """
        now = now or self._now()
        cutoff = now - SESSION_TIMEOUT
        candidates = db.session.query(AttendanceSession.id, AttendanceSession.member_pk).filter(
            AttendanceSession.status == SessionStatus.CHECKED_IN,
            AttendanceSession.check_in_time < cutoff
        ).all()

        logger.info(f"Found {len(candidates)} incomplete attendance sessions")

        closed = failed = 0
        for session_id, member_pk in candidates:
            try:
                with member_lock(member_pk):
                    session = AttendanceSession.query.filter_by(id=session_id).with_for_update() \
                        .populate_existing().first()
                    if session is None or not session.is_open:
                        db.session.rollback()
                        continue

                    estimated = session.check_in_time + AUTO_CHECKOUT_ESTIMATE
                    session.mark_incomplete(estimated, note=AUTO_CHECKOUT_NOTE, updated_by=actor)
                    AuditLog.record(
                        'session_auto_closed', 'attendance_session', session.id, actor,
                        {
                            'member_pk': member_pk,
                            'check_in_time': session.check_in_time.isoformat(),
                            'estimated_check_out_time': estimated.isoformat(),
                            'reason': AUTO_CHECKOUT_NOTE
                        },
                        now=now
                    )
                    db.session.commit()
                closed += 1
                logger.info(f"Auto-checkout completed for incomplete session: {session_id}")
            except Exception as e:
                db.session.rollback()
                failed += 1
                logger.error(f"Auto-checkout failed for session {session_id}: {e}")

        return closed, failed

    def purge_closed_before(self, cutoff):
        """Hard-delete checked-out sessions that started before `cutoff`"""
        deleted = AttendanceSession.query.filter(
            AttendanceSession.status == SessionStatus.CHECKED_OUT,
            AttendanceSession.check_in_time < cutoff
        ).delete(synchronize_session=False)
        db.session.commit()
        return deleted

    def daily_report(self, day, tz=None):
        """
        Aggregate sessions whose check-in falls on a local calendar day.

        Returns:
            dict with total_check_ins, unique_members, completed_sessions,
            total_duration and average_duration (minutes)
        """
        tz = tz or local_tz()
        start, end = day_bounds_utc(day, tz)
        completed = AttendanceSession.status == SessionStatus.CHECKED_OUT

        total, unique, completed_count, total_duration = db.session.query(
            func.count(AttendanceSession.id),
            func.count(func.distinct(AttendanceSession.member_pk)),
            func.sum(case((completed, 1), else_=0)),
            func.sum(case((completed, AttendanceSession.duration), else_=0)),
        ).filter(
            AttendanceSession.check_in_time >= start,
            AttendanceSession.check_in_time < end
        ).one()

        completed_count = int(completed_count or 0)
        total_duration = int(total_duration or 0)
        return {
            'date': day.isoformat(),
            'total_check_ins': int(total or 0),
            'unique_members': int(unique or 0),
            'completed_sessions': completed_count,
            'total_duration': total_duration,
            'average_duration': total_duration / completed_count if completed_count else 0
        }

    def member_stats(self, member, start=None, end=None):
        """Totals over the member's completed sessions"""
        query = db.session.query(
            func.count(AttendanceSession.id),
            func.sum(AttendanceSession.duration),
            func.avg(AttendanceSession.duration),
            func.max(AttendanceSession.duration),
            func.min(AttendanceSession.duration),
        ).filter(
            AttendanceSession.member_pk == member.id,
            AttendanceSession.status == SessionStatus.CHECKED_OUT
        )
        if start is not None:
            query = query.filter(AttendanceSession.check_in_time >= start)
        if end is not None:
            query = query.filter(AttendanceSession.check_in_time <= end)

        count, total, average, longest, shortest = query.one()
        return {
            'total_sessions': int(count or 0),
            'total_duration': int(total or 0),
            'average_duration': float(average or 0),
            'longest_session': int(longest or 0),
            'shortest_session': int(shortest or 0)
        }
