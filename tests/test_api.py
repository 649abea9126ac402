"""
Tests for the JSON API blueprint.
"""
from datetime import datetime, timedelta

from gymaccess.models import AccessLog, AttendanceDevice, AttendanceSession, Member, Payment
from gymaccess.services.jobs import MonthlyPaymentJob
from tests.conftest import NOW, DOOR_HEADERS, ADMIN_HEADERS


class TestAuth:
    def test_missing_key(self, client):
        response = client.get('/api/health')
        assert response.status_code == 401
        assert response.get_json() == {'success': False, 'message': 'API key required'}

    def test_wrong_key(self, client):
        response = client.get('/api/health', headers={'X-API-Key': 'nope'})
        assert response.status_code == 401
        assert response.get_json()['message'] == 'Invalid API key'

    def test_door_key_cannot_administer(self, client, make_member):
        member = make_member()
        response = client.get(f'/api/attendance/status/{member.member_id}', headers=DOOR_HEADERS)
        assert response.status_code == 401

    def test_admin_key_opens_door_routes(self, client):
        assert client.get('/api/health', headers=ADMIN_HEADERS).status_code == 200


class TestHealth:
    def test_heartbeat_from_device_header(self, client, db, device):
        headers = dict(DOOR_HEADERS, **{'X-Device-ID': device.device_id})

        response = client.get('/api/health', headers=headers)

        assert response.status_code == 200
        assert response.get_json()['status'] == 'ok'
        db.session.expire_all()
        assert db.session.get(AttendanceDevice, device.id).last_heartbeat == NOW


class TestDoorAccess:
    def test_check_in_then_out(self, client, clock, make_member, device):
        member = make_member()
        body = {'member_id': member.member_id, 'device_id': device.device_id}

        first = client.post('/api/attendance/access', json=body, headers=DOOR_HEADERS)
        clock.advance(timedelta(minutes=45))
        second = client.post('/api/attendance/access', json=body, headers=DOOR_HEADERS)

        assert first.status_code == 200
        assert first.get_json()['message'] == 'Check-in successful'
        assert first.get_json()['data']['type'] == 'check-in'
        assert second.get_json()['message'] == 'Check-out successful'
        assert second.get_json()['data']['duration'] == 45

    def test_denied_is_forbidden(self, client, device):
        response = client.post('/api/attendance/access',
                               json={'member_id': 'GYM000999', 'device_id': device.device_id},
                               headers=DOOR_HEADERS)
        assert response.status_code == 403
        body = response.get_json()
        assert body['success'] is False
        assert body['message'] == 'Member not found'
        assert AccessLog.query.filter_by(status='denied').count() == 1

    def test_suspension_over_http(self, client, db, make_member, device):
        member = make_member(next_payment_due=NOW - timedelta(days=31))

        response = client.post('/api/attendance/access',
                               json={'member_id': member.member_id, 'device_id': device.device_id},
                               headers=DOOR_HEADERS)

        assert response.status_code == 403
        assert response.get_json()['message'] == 'Payment overdue - access suspended'
        db.session.expire_all()
        assert db.session.get(Member, member.id).door_access_enabled is False

    def test_empty_body(self, client):
        response = client.post('/api/attendance/access', headers=DOOR_HEADERS)
        assert response.status_code == 400
        assert response.get_json()['message'] == 'No data provided'

    def test_verify_records_nothing(self, client, make_member, device):
        member = make_member()
        response = client.post('/api/attendance/verify',
                               json={'member_id': member.member_id, 'device_id': device.device_id},
                               headers=DOOR_HEADERS)
        assert response.status_code == 200
        assert response.get_json()['data']['access'] is True
        assert AttendanceSession.query.count() == 0
        assert AccessLog.query.count() == 0


class TestAttendanceAdmin:
    def test_status(self, client, make_member, device):
        member = make_member()
        client.post('/api/attendance/access',
                    json={'member_id': member.member_id, 'device_id': device.device_id},
                    headers=DOOR_HEADERS)

        response = client.get(f'/api/attendance/status/{member.member_id}', headers=ADMIN_HEADERS)

        data = response.get_json()['data']
        assert data['status'] == 'checked-in'
        assert data['last_activity']['type'] == 'check-in'

    def test_status_unknown_member(self, client):
        response = client.get('/api/attendance/status/GYM000404', headers=ADMIN_HEADERS)
        assert response.status_code == 404
        assert response.get_json()['success'] is False

    def test_logs(self, client, make_member, device):
        member = make_member()
        other = make_member()
        for m in (member, other):
            client.post('/api/attendance/access',
                        json={'member_id': m.member_id, 'device_id': device.device_id},
                        headers=DOOR_HEADERS)

        response = client.get(f'/api/attendance/logs?member_id={member.member_id}',
                              headers=ADMIN_HEADERS)

        data = response.get_json()['data']
        assert len(data['logs']) == 1
        assert data['pagination']['total_items'] == 1

    def test_manual_entry(self, client, make_member):
        member = make_member()
        response = client.post('/api/attendance/manual', json={
            'member_id': member.member_id,
            'type': 'check-in',
            'recorded_by': 'frontdesk-1'
        }, headers=ADMIN_HEADERS)

        assert response.status_code == 201
        data = response.get_json()['data']
        assert data['method'] == 'manual'
        assert data['reason'] == 'Manual entry'
        assert data['recorded_by'] == 'frontdesk-1'

    def test_manual_entry_requires_operator(self, client, make_member):
        member = make_member()
        response = client.post('/api/attendance/manual', json={
            'member_id': member.member_id,
            'type': 'check-in'
        }, headers=ADMIN_HEADERS)

        assert response.status_code == 400
        assert 'recorded_by' in response.get_json()['errors']

    def test_manual_check_out_without_session(self, client, make_member):
        member = make_member()
        response = client.post('/api/attendance/manual', json={
            'member_id': member.member_id,
            'type': 'check-out',
            'recorded_by': 'frontdesk-1'
        }, headers=ADMIN_HEADERS)
        assert response.status_code == 400

    def test_daily_report(self, client, make_member, make_session):
        member = make_member()
        make_session(member, datetime(2024, 3, 14, 6, 0), datetime(2024, 3, 14, 7, 0))

        response = client.get('/api/attendance/report', headers=ADMIN_HEADERS)

        data = response.get_json()['data']
        assert data['date'] == '2024-03-14'
        assert data['total_check_ins'] == 1
        assert data['average_duration'] == 60

    def test_report_bad_date(self, client):
        response = client.get('/api/attendance/report?date=14/03/2024', headers=ADMIN_HEADERS)
        assert response.status_code == 400
        assert response.get_json()['field'] == 'date'

    def test_member_report(self, client, make_member, make_session):
        member = make_member()
        make_session(member, NOW - timedelta(days=1), NOW - timedelta(days=1) + timedelta(minutes=50))

        response = client.get(f'/api/attendance/report?member_id={member.member_id}',
                              headers=ADMIN_HEADERS)

        data = response.get_json()['data']
        assert data['member']['member_id'] == member.member_id
        assert data['total_sessions'] == 1


class TestMembersApi:
    def test_enrol(self, client):
        response = client.post('/api/members', json={
            'first_name': 'Hina',
            'last_name': 'Raza',
            'email': 'hina@fitclub.pk',
            'membership_type': 'vip',
            'monthly_fee': 120,
            'membership_start_date': '2024-03-01T10:00:00',
            'created_by': 'admin-1'
        }, headers=ADMIN_HEADERS)

        assert response.status_code == 201
        data = response.get_json()['data']
        assert data['member_id'] == 'GYM000001'
        assert data['monthly_fee'] == 120.0
        assert data['next_payment_due'] == '2024-04-01T10:00:00'

    def test_enrol_invalid_email(self, client):
        response = client.post('/api/members', json={
            'first_name': 'Hina',
            'email': 'not-an-email',
            'created_by': 'admin-1'
        }, headers=ADMIN_HEADERS)
        assert response.status_code == 400
        assert 'email' in response.get_json()['errors']

    def test_enrol_duplicate_email(self, client, make_member):
        member = make_member()
        response = client.post('/api/members', json={
            'first_name': 'Hina',
            'email': member.email,
            'created_by': 'admin-1'
        }, headers=ADMIN_HEADERS)
        assert response.status_code == 400
        assert response.get_json()['field'] == 'email'

    def test_payment_status_override(self, client, make_member):
        member = make_member(next_payment_due=NOW - timedelta(days=3))
        response = client.put(f'/api/members/{member.member_id}/payment-status', json={
            'payment_status': 'paid',
            'payment_date': '2024-03-15',
            'performed_by': 'admin-1'
        }, headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['payment_status'] == 'paid'
        assert data['last_payment_date'] == '2024-03-15T00:00:00'
        assert data['next_payment_due'] == '2024-04-14T00:00:00'

    def test_payment_status_bad_value(self, client, make_member):
        member = make_member()
        response = client.put(f'/api/members/{member.member_id}/payment-status', json={
            'payment_status': 'late',
            'performed_by': 'admin-1'
        }, headers=ADMIN_HEADERS)
        assert response.status_code == 400
        assert 'payment_status' in response.get_json()['errors']

    def test_payment_status_unknown_member(self, client):
        response = client.put('/api/members/GYM000404/payment-status', json={
            'payment_status': 'paid',
            'performed_by': 'admin-1'
        }, headers=ADMIN_HEADERS)
        assert response.status_code == 404

    def test_door_access_toggle(self, client, make_member):
        member = make_member()
        url = f'/api/members/{member.member_id}/door-access'

        off = client.post(url, json={'enabled': False, 'performed_by': 'admin-1'},
                          headers=ADMIN_HEADERS)
        on = client.post(url, json={'enabled': True, 'performed_by': 'admin-1'},
                         headers=ADMIN_HEADERS)

        assert off.get_json()['message'] == 'Door access disabled'
        assert off.get_json()['data']['door_access_enabled'] is False
        assert on.get_json()['message'] == 'Door access enabled'

    def test_deactivate(self, client, make_member):
        member = make_member()
        response = client.post(f'/api/members/{member.member_id}/deactivate',
                               json={'performed_by': 'admin-1', 'reason': 'Requested'},
                               headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.get_json()['data']['is_active'] is False

    def test_overdue_members(self, client, make_member):
        late = make_member(next_payment_due=NOW - timedelta(days=35))
        make_member(next_payment_due=NOW - timedelta(days=3))

        response = client.get('/api/members/overdue', headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['count'] == 1
        assert data['members'][0]['member_id'] == late.member_id
        assert data['members'][0]['days_overdue'] == 35


class TestPaymentsApi:
    def test_payment_and_refund(self, client, make_member):
        member = make_member()

        created = client.post('/api/payments', json={
            'member_id': member.member_id,
            'amount': 50,
            'payment_method': 'online',
            'processed_by': 'cashier-1'
        }, headers=ADMIN_HEADERS)
        assert created.status_code == 201
        payment_id = created.get_json()['data']['payment_id']
        assert payment_id == 'PAY00000001'

        refunded = client.post(f'/api/payments/{payment_id}/refund', json={
            'reason': 'Charged twice',
            'refunded_by': 'manager-1'
        }, headers=ADMIN_HEADERS)
        assert refunded.status_code == 200
        details = refunded.get_json()['data']['refund_details']
        assert details['refund_amount'] == 50.0
        assert details['refunded_by'] == 'manager-1'

        again = client.post(f'/api/payments/{payment_id}/refund', json={
            'reason': 'Charged twice',
            'refunded_by': 'manager-1'
        }, headers=ADMIN_HEADERS)
        assert again.status_code == 400
        assert again.get_json()['message'] == 'Only completed payments can be refunded'

    def test_payment_requires_amount(self, client, make_member):
        member = make_member()
        response = client.post('/api/payments', json={
            'member_id': member.member_id,
            'processed_by': 'cashier-1'
        }, headers=ADMIN_HEADERS)
        assert response.status_code == 400
        assert response.get_json()['field'] == 'amount'

    def test_complete_generated_fee(self, client, make_member):
        member = make_member(next_payment_due=datetime(2024, 3, 20))
        MonthlyPaymentJob().run(NOW)
        payment = Payment.query.filter_by(member_pk=member.id).one()

        response = client.post(f'/api/payments/{payment.payment_id}/complete', json={
            'payment_method': 'bank_transfer',
            'processed_by': 'cashier-1'
        }, headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['payment_status'] == 'completed'
        assert data['payment_method'] == 'bank_transfer'

    def test_refund_unknown_payment(self, client):
        response = client.post('/api/payments/PAY00000404/refund', json={
            'reason': 'n/a',
            'refunded_by': 'manager-1'
        }, headers=ADMIN_HEADERS)
        assert response.status_code == 404

    def test_history(self, client, make_member):
        member = make_member()
        client.post('/api/payments', json={
            'member_id': member.member_id,
            'amount': 50,
            'processed_by': 'cashier-1'
        }, headers=ADMIN_HEADERS)

        response = client.get(f'/api/members/{member.member_id}/payments', headers=ADMIN_HEADERS)

        data = response.get_json()['data']
        assert data['summary']['total_paid'] == 50.0
        assert len(data['payments']) == 1

    def test_list_payments(self, client, make_member):
        member = make_member()
        for amount in (50, 20):
            client.post('/api/payments', json={
                'member_id': member.member_id,
                'amount': amount,
                'payment_type': 'other',
                'processed_by': 'cashier-1'
            }, headers=ADMIN_HEADERS)

        response = client.get('/api/payments?payment_type=other&limit=1', headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.get_json()['data']
        assert len(data['payments']) == 1
        assert data['pagination']['total_items'] == 2
        assert data['pagination']['items_per_page'] == 1

    def test_list_payments_bad_filter(self, client):
        response = client.get('/api/payments?payment_status=lost', headers=ADMIN_HEADERS)
        assert response.status_code == 400
        assert response.get_json()['field'] == 'payment_status'

    def test_payment_stats(self, client, make_member):
        member = make_member()
        client.post('/api/payments', json={
            'member_id': member.member_id,
            'amount': 50,
            'processed_by': 'cashier-1'
        }, headers=ADMIN_HEADERS)

        response = client.get(f'/api/payments/stats?date_from={(NOW - timedelta(days=1)).isoformat()}',
                              headers=ADMIN_HEADERS)

        assert response.status_code == 200
        totals = response.get_json()['data']['totals']
        assert totals['total_revenue'] == 50.0
        assert totals['total_payments'] == 1

    def test_payment_stats_requires_admin_key(self, client):
        assert client.get('/api/payments/stats', headers=DOOR_HEADERS).status_code == 401
