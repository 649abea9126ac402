from datetime import date, timedelta

from flask import Blueprint, request, jsonify, current_app

from gymaccess import db
from gymaccess.clock import utcnow, local_tz, to_local
from gymaccess.errors import ValidationError, MemberNotFound, PaymentNotFound
from gymaccess.forms import (
    EnrollMemberForm, ManualAttendanceForm, PaymentStatusForm, DoorAccessForm,
    DeactivateMemberForm, PaymentForm, CompletePaymentForm, RefundForm
)
from gymaccess.models.device import AttendanceDevice
from gymaccess.models.member import Member
from gymaccess.services import door, members, payments
from gymaccess.services.sessions import AttendanceSessionTracker
from gymaccess.utils.decorators import door_key_required, admin_key_required
from gymaccess.utils.helpers import pagination_args

api_bp = Blueprint('api', __name__)


@api_bp.errorhandler(ValidationError)
def handle_validation_error(error):
    db.session.rollback()
    return jsonify({'success': False, 'message': error.message, 'field': error.field}), 400


@api_bp.errorhandler(MemberNotFound)
@api_bp.errorhandler(PaymentNotFound)
def handle_not_found(error):
    db.session.rollback()
    return jsonify({'success': False, 'message': str(error)}), 404


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('No data provided')
    return data


def _invalid(form):
    return jsonify({
        'success': False,
        'message': 'Validation failed',
        'errors': form.error_messages()
    }), 400


def _ok(data=None, message=None, status=200):
    body = {'success': True}
    if message:
        body['message'] = message
    if data is not None:
        body['data'] = data
    return jsonify(body), status


# ---------------------------------------------------------------------------
# Door controllers
# ---------------------------------------------------------------------------

@api_bp.route('/health')
@door_key_required
def health():
    """Health check endpoint; doubles as a heartbeat when X-Device-ID is sent"""
    device_id = request.headers.get('X-Device-ID')
    if device_id:
        device = AttendanceDevice.find_by_device_id(device_id)
        if device:
            device.touch(utcnow())
            db.session.commit()

    return jsonify({
        'status': 'ok',
        'timestamp': utcnow().isoformat()
    })


@api_bp.route('/attendance/access', methods=['POST'])
@door_key_required
def process_access():
    """
    Process a door access attempt

    Request body:
    {
        "member_id": "GYM000001",
        "device_id": "DOOR-1",
        "method": "card"
    }
    """
    data = _json_body()
    decision = door.process_door_access(
        data.get('member_id'),
        data.get('device_id'),
        method=data.get('method') or 'card',
        ip_address=request.remote_addr
    )

    if decision.access:
        message = 'Check-in successful' if decision.type == 'check-in' else 'Check-out successful'
        return _ok(decision.to_dict(), message)

    return jsonify({
        'success': False,
        'message': decision.reason,
        'data': decision.to_dict()
    }), 403


@api_bp.route('/attendance/verify', methods=['POST'])
@door_key_required
def verify_access():
    """Check whether a member would be let in, without recording anything"""
    data = _json_body()
    decision = door.verify_member_access(data.get('member_id'), data.get('device_id'))
    return _ok(decision.to_dict())


# ---------------------------------------------------------------------------
# Attendance administration
# ---------------------------------------------------------------------------

@api_bp.route('/attendance/status/<member_id>')
@admin_key_required
def member_status(member_id):
    return _ok(door.get_member_current_status(member_id))


@api_bp.route('/attendance/logs')
@admin_key_required
def attendance_logs():
    page, limit = pagination_args(request, current_app.config.get('ITEMS_PER_PAGE', 50))
    filters = {
        key: request.args.get(key)
        for key in ('member_id', 'device_id', 'type', 'status', 'date_from', 'date_to')
        if request.args.get(key)
    }
    return _ok(door.get_attendance_logs(filters, page, limit))


@api_bp.route('/attendance/manual', methods=['POST'])
@admin_key_required
def manual_attendance():
    form = ManualAttendanceForm.from_json(_json_body())
    if not form.validate():
        return _invalid(form)

    log = door.manual_attendance(
        form.member_id.data,
        form.type.data,
        device_id=form.device_id.data or None,
        reason=form.reason.data or None,
        recorded_by=form.recorded_by.data,
        ip_address=request.remote_addr
    )
    return _ok(log.to_dict(), f'Manual {log.type} recorded successfully', 201)


@api_bp.route('/attendance/report')
@admin_key_required
def attendance_report():
    """
    Daily attendance summary (local calendar day, default yesterday).
    With ?member_id=..., that member's session statistics instead.
    """
    tracker = AttendanceSessionTracker()
    tz = local_tz()

    member_id = request.args.get('member_id')
    if member_id:
        member = Member.find_by_member_id(member_id)
        if not member:
            raise MemberNotFound(member_id)
        stats = tracker.member_stats(member)
        stats['member'] = member.to_dict(brief=True)
        return _ok(stats)

    day_str = request.args.get('date')
    if day_str:
        try:
            day = date.fromisoformat(day_str)
        except ValueError:
            raise ValidationError(f'Invalid date: {day_str}', field='date')
    else:
        day = to_local(utcnow(), tz).date() - timedelta(days=1)

    return _ok(tracker.daily_report(day, tz))


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

@api_bp.route('/members', methods=['POST'])
@admin_key_required
def enroll_member():
    form = EnrollMemberForm.from_json(_json_body())
    if not form.validate():
        return _invalid(form)

    member = members.enroll_member({
        'first_name': form.first_name.data,
        'last_name': form.last_name.data,
        'email': form.email.data,
        'phone': form.phone.data or None,
        'membership_type': form.membership_type.data,
        'monthly_fee': form.monthly_fee.data or 0,
        'membership_start_date': form.membership_start_date.data,
        'notes': form.notes.data or None,
    }, created_by=form.created_by.data)
    return _ok(member.to_dict(), 'Member enrolled successfully', 201)


@api_bp.route('/members/overdue')
@admin_key_required
def overdue_members():
    overdue = members.get_overdue_members()
    return _ok({'members': overdue, 'count': len(overdue)})


@api_bp.route('/members/<member_id>/payment-status', methods=['PUT'])
@admin_key_required
def update_payment_status(member_id):
    form = PaymentStatusForm.from_json(_json_body())
    if not form.validate():
        return _invalid(form)

    member = members.update_payment_status(
        member_id,
        form.payment_status.data,
        payment_date=form.payment_date.data,
        performed_by=form.performed_by.data
    )
    return _ok(member.to_dict(), 'Payment status updated successfully')


@api_bp.route('/members/<member_id>/door-access', methods=['POST'])
@admin_key_required
def toggle_door_access(member_id):
    form = DoorAccessForm.from_json(_json_body())
    if not form.validate():
        return _invalid(form)

    member = members.set_door_access(
        member_id, form.enabled.data, form.performed_by.data, reason=form.reason.data or None
    )
    state = 'enabled' if member.door_access_enabled else 'disabled'
    return _ok(member.to_dict(), f'Door access {state}')


@api_bp.route('/members/<member_id>/deactivate', methods=['POST'])
@admin_key_required
def deactivate_member(member_id):
    form = DeactivateMemberForm.from_json(_json_body())
    if not form.validate():
        return _invalid(form)

    member = members.deactivate_member(member_id, form.performed_by.data,
                                       reason=form.reason.data or None)
    return _ok(member.to_dict(), 'Member deactivated')


@api_bp.route('/members/<member_id>/payments')
@admin_key_required
def member_payments(member_id):
    page, limit = pagination_args(request, 20)
    return _ok(payments.get_member_payment_history(member_id, page, limit))


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

@api_bp.route('/payments')
@admin_key_required
def list_payments():
    page, limit = pagination_args(request, 20)
    filters = {
        key: request.args.get(key)
        for key in ('member_id', 'payment_method', 'payment_status', 'payment_type',
                    'date_from', 'date_to')
        if request.args.get(key)
    }
    return _ok(payments.list_payments(filters, page, limit))


@api_bp.route('/payments/stats')
@admin_key_required
def payment_stats():
    return _ok(payments.payment_stats(
        date_from=request.args.get('date_from'),
        date_to=request.args.get('date_to')
    ))


@api_bp.route('/payments', methods=['POST'])
@admin_key_required
def create_payment():
    form = PaymentForm.from_json(_json_body())
    if not form.validate():
        return _invalid(form)

    payment = payments.process_payment({
        'member_id': form.member_id.data,
        'amount': form.amount.data,
        'payment_type': form.payment_type.data,
        'payment_method': form.payment_method.data,
        'payment_status': form.payment_status.data,
        'transaction_id': form.transaction_id.data or None,
        'payment_date': form.payment_date.data,
        'due_date': form.due_date.data,
        'period_start': form.period_start.data,
        'period_end': form.period_end.data,
        'notes': form.notes.data,
    }, processed_by=form.processed_by.data)
    return _ok(payment.to_dict(), 'Payment processed successfully', 201)


@api_bp.route('/payments/<payment_id>/complete', methods=['POST'])
@admin_key_required
def complete_payment(payment_id):
    form = CompletePaymentForm.from_json(_json_body())
    if not form.validate():
        return _invalid(form)

    payment = payments.complete_payment(
        payment_id,
        form.processed_by.data,
        payment_method=form.payment_method.data,
        transaction_id=form.transaction_id.data or None,
        payment_date=form.payment_date.data
    )
    return _ok(payment.to_dict(), 'Payment completed successfully')


@api_bp.route('/payments/<payment_id>/refund', methods=['POST'])
@admin_key_required
def refund_payment(payment_id):
    form = RefundForm.from_json(_json_body())
    if not form.validate():
        return _invalid(form)

    payment = payments.process_refund(
        payment_id,
        refund_amount=form.refund_amount.data,
        reason=form.reason.data,
        refunded_by=form.refunded_by.data
    )
    return _ok(payment.to_dict(), 'Payment refunded successfully')
