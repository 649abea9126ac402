"""
Reconciliation jobs.

Each job is stateless: `run(now)` does one pass against the database and
returns a JobResult. Every record is its own unit of work, so one bad row
is logged and skipped without undoing the rest of the batch. Nothing here
reads the wall clock; `now` comes from the caller.
"""
import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import or_

from gymaccess import db
from gymaccess.clock import local_tz, to_local, month_bounds_utc
from gymaccess.config import (
    REMINDER_WINDOW, ATTENDANCE_RETENTION, ACCESS_LOG_RETENTION
)
from gymaccess.models.access_log import AccessLog
from gymaccess.models.audit import AuditLog
from gymaccess.models.member import Member
from gymaccess.models.payment import Payment
from gymaccess.services import payment_status
from gymaccess.services.notifier import get_notifier
from gymaccess.services.sessions import AttendanceSessionTracker
from gymaccess.utils.helpers import add_months, ceil_days, format_currency, format_date

logger = logging.getLogger(__name__)


class JobResult:
    """Counters for one job run"""

    def __init__(self, processed=0, changed=0, failed=0, skipped=0, details=None):
        self.processed = processed
        self.changed = changed
        self.failed = failed
        self.skipped = skipped
        self.details = details or {}

    def __repr__(self):
        return (f'<JobResult processed={self.processed} changed={self.changed} '
                f'failed={self.failed} skipped={self.skipped}>')

    def __str__(self):
        return (f'processed={self.processed}, changed={self.changed}, '
                f'failed={self.failed}, skipped={self.skipped}')

    def to_dict(self):
        return {
            'processed': self.processed,
            'changed': self.changed,
            'failed': self.failed,
            'skipped': self.skipped,
            'details': self.details
        }


class Job:
    """Base class for scheduled jobs"""
    name = None

    @property
    def actor(self):
        return f'system:{self.name}'

    def run(self, now):
        raise NotImplementedError

    def _record_failed(self, result, record_id, error):
        db.session.rollback()
        result.failed += 1
        logger.error(f"[{self.name}] failed for {record_id}: {error}")


class OverdueSweepJob(Job):
    """Mark members overdue past the grace period and disable their door access"""
    name = 'overdue-sweep'

    def run(self, now):
        logger.info("Starting overdue payment check...")
        result = JobResult()

        cutoff = payment_status.grace_cutoff(now)
        candidates = [pk for (pk,) in db.session.query(Member.id).filter(
            Member.is_active.is_(True),
            Member.payment_status != payment_status.PAID,
            Member.next_payment_due < cutoff
        ).all()]

        logger.info(f"Found {len(candidates)} members with overdue payments")

        for pk in candidates:
            try:
                member = Member.lock(pk)
                result.processed += 1
                if member is None or not member.is_payment_overdue(now):
                    db.session.rollback()
                    result.skipped += 1
                    continue

                previous = member.payment_status
                member.payment_status = member.derived_payment_status(now)
                disabled = member.disable_door_access()
                if disabled or previous != member.payment_status:
                    AuditLog.record('overdue_sweep', 'member', member.member_id, self.actor, {
                        'from': previous,
                        'to': member.payment_status,
                        'door_access_disabled': disabled,
                        'next_payment_due': member.next_payment_due.isoformat()
                    }, now=now)
                    result.changed += 1
                db.session.commit()

                if disabled:
                    logger.info(f"Door access disabled for overdue member: {member.full_name}")
            except Exception as e:
                self._record_failed(result, pk, e)

        logger.info(f"Overdue payment check completed ({result})")
        return result


def render_payment_reminder(member, now, overdue, tz=None):
    """
    Reminder copy for one member.

    Returns:
        (sms_text, email_subject, email_html)
    """
    due = member.next_payment_due
    amount = format_currency(member.monthly_fee)
    due_label = format_date(to_local(due, tz))

    if overdue:
        days = ceil_days(now - due)
        message = (f"Hi {member.first_name}, your gym membership payment is {days} days overdue. "
                   f"Please pay {amount} to avoid service interruption.")
        if not member.door_access_enabled:
            message += " Your door access has been disabled."
        subject = 'Overdue Payment Notice'
        heading = 'Payment Overdue'
    else:
        days = ceil_days(due - now)
        message = (f"Hi {member.first_name}, your gym membership payment of {amount} is due in "
                   f"{days} days ({due_label}). Please pay to avoid service interruption.")
        subject = 'Payment Reminder'
        heading = 'Payment Reminder'

    html = (
        f"<h2>{heading}</h2>"
        f"<p>Dear {member.full_name},</p>"
        f"<p>{message}</p>"
        f"<p><strong>Member ID:</strong> {member.member_id}</p>"
        f"<p><strong>Amount Due:</strong> {amount}</p>"
        f"<p><strong>Due Date:</strong> {due_label}</p>"
        f"<p>Please contact the gym reception to make your payment.</p>"
        f"<p>Thank you,<br>Gym Management Team</p>"
    )
    return message, subject, html


class PaymentReminderJob(Job):
    """SMS and email reminders for upcoming and overdue payments"""
    name = 'payment-reminder'

    def __init__(self, notifier=None):
        self.notifier = notifier

    def run(self, now):
        logger.info("Starting payment reminder process...")
        result = JobResult(details={'upcoming': [], 'overdue': []})
        notifier = self.notifier or get_notifier()
        tz = local_tz()

        members = Member.query.filter(
            Member.is_active.is_(True),
            Member.payment_status != payment_status.PAID,
            or_(Member.next_payment_due.is_(None),
                Member.next_payment_due <= now + REMINDER_WINDOW)
        ).order_by(Member.id).all()

        logger.info(f"Sending payment reminders to {len(members)} members")

        for member in members:
            result.processed += 1
            if member.next_payment_due is None:
                logger.warning(f"Skipping {member.full_name}: next_payment_due is missing")
                result.skipped += 1
                continue

            try:
                status = member.derived_payment_status(now)
                if status == payment_status.PAID:
                    result.skipped += 1
                    continue

                overdue = status == payment_status.OVERDUE
                sms, subject, html = render_payment_reminder(member, now, overdue, tz)
                result.details['overdue' if overdue else 'upcoming'].append(member.member_id)

                sms_result = notifier.send_sms(member.phone, sms)
                email_result = notifier.send_email(member.email, subject, html)
            except Exception as e:
                result.failed += 1
                logger.error(f"Failed to send reminder to {member.full_name}: {e}")
                continue

            if sms_result.success or email_result.success:
                result.changed += 1
                logger.info(f"Payment reminder sent to {member.full_name}")
            else:
                result.failed += 1
                logger.warning(
                    f"Payment reminder not delivered to {member.full_name}: "
                    f"sms={sms_result.error}, email={email_result.error}"
                )

        logger.info(f"Payment reminder process completed ({result})")
        return result


class MonthlyPaymentJob(Job):
    """One pending membership fee per member due this month"""
    name = 'monthly-payment'

    def run(self, now):
        logger.info("Starting monthly payment generation...")
        result = JobResult()

        start, end = month_bounds_utc(now, local_tz())
        candidates = [pk for (pk,) in db.session.query(Member.id).filter(
            Member.is_active.is_(True),
            Member.next_payment_due >= start,
            Member.next_payment_due < end
        ).order_by(Member.id).all()]

        logger.info(f"Generating payment records for {len(candidates)} members")

        for pk in candidates:
            try:
                member = Member.lock(pk)
                result.processed += 1
                due = member.next_payment_due
                if due is None or Payment.membership_fee_exists(member.id, due):
                    db.session.rollback()
                    result.skipped += 1
                    continue

                payment = Payment(
                    payment_id=Payment.next_payment_id(),
                    member_pk=member.id,
                    amount=member.monthly_fee,
                    payment_type='membership_fee',
                    payment_method='pending',
                    payment_status='pending',
                    payment_date=None,
                    due_date=due,
                    period_start=due,
                    period_end=add_months(due, 1),
                    processed_by=self.actor,
                    created_at=now
                )
                db.session.add(payment)
                db.session.flush()
                AuditLog.record('payment_generated', 'payment', payment.payment_id, self.actor, {
                    'member_id': member.member_id,
                    'due_date': due.isoformat(),
                    'amount': str(member.monthly_fee)
                }, now=now)
                db.session.commit()

                result.changed += 1
                logger.info(f"Payment record created for {member.full_name}")
            except Exception as e:
                self._record_failed(result, pk, e)

        logger.info(f"Monthly payment generation completed ({result})")
        return result


class AttendanceCleanupJob(Job):
    """Purge old closed sessions and force-close abandoned ones"""
    name = 'attendance-cleanup'

    def __init__(self, tracker=None):
        self.tracker = tracker

    def run(self, now):
        logger.info("Starting attendance cleanup...")
        tracker = self.tracker or AttendanceSessionTracker(lambda: now)

        deleted = tracker.purge_closed_before(now - ATTENDANCE_RETENTION)
        logger.info(f"Cleaned up {deleted} old attendance records")

        closed, failed = tracker.auto_close_abandoned(now, actor=self.actor)

        result = JobResult(
            processed=deleted + closed + failed,
            changed=deleted + closed,
            failed=failed,
            details={'deleted': deleted, 'auto_closed': closed}
        )
        logger.info(f"Attendance cleanup completed ({result})")
        return result


class AccessLogRetentionJob(Job):
    """Delete access log entries past the retention window"""
    name = 'log-cleanup'

    def run(self, now):
        logger.info("Starting log cleanup...")
        cutoff = now - ACCESS_LOG_RETENTION
        deleted = AccessLog.query.filter(AccessLog.timestamp < cutoff).delete(
            synchronize_session=False
        )
        db.session.commit()
        logger.info(f"Cleaned up {deleted} old access log entries")
        return JobResult(processed=deleted, changed=deleted)


class DailyAttendanceReportJob(Job):
    """Log yesterday's attendance summary"""
    name = 'daily-report'

    def __init__(self, tracker=None):
        self.tracker = tracker

    def run(self, now):
        logger.info("Generating daily attendance report...")
        tz = local_tz()
        tracker = self.tracker or AttendanceSessionTracker(lambda: now)

        yesterday = to_local(now, tz).date() - timedelta(days=1)
        summary = tracker.daily_report(yesterday, tz)

        logger.info(
            f"Daily attendance report for {format_date(yesterday)}: "
            f"total_check_ins={summary['total_check_ins']}, "
            f"unique_members={summary['unique_members']}, "
            f"completed_sessions={summary['completed_sessions']}, "
            f"average_duration={round(summary['average_duration'])} minutes"
        )
        return JobResult(processed=summary['total_check_ins'], details=summary)


# Job name -> (class, config key holding its crontab expression)
JOBS = {
    OverdueSweepJob.name: (OverdueSweepJob, 'PAYMENT_CHECK_CRON'),
    PaymentReminderJob.name: (PaymentReminderJob, 'SMS_REMINDER_CRON'),
    MonthlyPaymentJob.name: (MonthlyPaymentJob, 'MONTHLY_PAYMENT_CRON'),
    AccessLogRetentionJob.name: (AccessLogRetentionJob, 'LOG_CLEANUP_CRON'),
    AttendanceCleanupJob.name: (AttendanceCleanupJob, 'ATTENDANCE_CLEANUP_CRON'),
    DailyAttendanceReportJob.name: (DailyAttendanceReportJob, 'DAILY_REPORT_CRON'),
}


def build_job(name):
    """Instantiate a registered job by name"""
    try:
        job_class, _ = JOBS[name]
    except KeyError:
        raise KeyError(f"Unknown job '{name}'. Available: {', '.join(sorted(JOBS))}")
    return job_class()


def job_schedule(name, config=None):
    """Crontab expression configured for a job"""
    _, config_key = JOBS[name]
    return (config or current_app.config)[config_key]
