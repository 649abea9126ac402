"""
Tests for the SMS/email transports. Nothing leaves the process: the HTTP
call and the SMTP connection are replaced.
"""
import smtplib

import requests

from gymaccess.services import notifier as notifier_module
from gymaccess.services.notifier import GatewayNotifier, LoggingNotifier, build_notifier

TWILIO = {
    'TWILIO_ACCOUNT_SID': 'AC123',
    'TWILIO_AUTH_TOKEN': 'secret',
    'TWILIO_PHONE_NUMBER': '+15550001111',
}
SMTP = {
    'MAIL_SERVER': 'smtp.fitclub.pk',
    'MAIL_PORT': 587,
    'MAIL_USERNAME': 'alerts@fitclub.pk',
    'MAIL_PASSWORD': 'pw',
}


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload
        self.reason = 'Bad Request' if status_code >= 400 else 'OK'
        self.text = str(payload)

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._payload


class FakeSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        if password != 'pw':
            raise smtplib.SMTPAuthenticationError(535, b'bad credentials')

    def send_message(self, msg):
        FakeSMTP.sent.append(msg)


class TestBuildNotifier:
    def test_dry_run_when_unconfigured(self):
        assert isinstance(build_notifier({}), LoggingNotifier)

    def test_gateway_when_any_transport_configured(self):
        assert isinstance(build_notifier(TWILIO), GatewayNotifier)
        assert isinstance(build_notifier(SMTP), GatewayNotifier)

    def test_dry_run_always_succeeds(self):
        result = LoggingNotifier().send_sms('+923001234567', 'hello')
        assert result.success is True
        assert result.message_id == 'dry-run'


class TestSms:
    def test_not_configured(self):
        result = GatewayNotifier(SMTP).send_sms('+923001234567', 'hello')
        assert result == (False, 'SMS service not configured', None)

    def test_posts_to_twilio(self, monkeypatch):
        calls = []

        def fake_post(url, data=None, auth=None, timeout=None):
            calls.append((url, data, auth))
            return FakeResponse(201, {'sid': 'SM42'})

        monkeypatch.setattr(notifier_module.requests, 'post', fake_post)
        result = GatewayNotifier(TWILIO).send_sms('+923001234567', 'Payment due')

        assert result.success is True
        assert result.message_id == 'SM42'
        url, data, auth = calls[0]
        assert url.endswith('/Accounts/AC123/Messages.json')
        assert data == {'To': '+923001234567', 'From': '+15550001111', 'Body': 'Payment due'}
        assert auth == ('AC123', 'secret')

    def test_gateway_rejection(self, monkeypatch):
        monkeypatch.setattr(notifier_module.requests, 'post',
                            lambda *a, **kw: FakeResponse(400, {'message': 'Invalid To number'}))
        result = GatewayNotifier(TWILIO).send_sms('123', 'hello')
        assert result.success is False
        assert result.error == '400: Invalid To number'

    def test_network_error(self, monkeypatch):
        def down(*args, **kwargs):
            raise requests.exceptions.ConnectionError('unreachable')

        monkeypatch.setattr(notifier_module.requests, 'post', down)
        result = GatewayNotifier(TWILIO).send_sms('+923001234567', 'hello')
        assert result.success is False
        assert 'unreachable' in result.error


class TestEmail:
    def test_not_configured(self):
        result = GatewayNotifier(TWILIO).send_email('a@fitclub.pk', 'Hi', '<p>Hi</p>')
        assert result.error == 'Email service not configured'

    def test_sends_html_with_text_part(self, monkeypatch):
        FakeSMTP.sent = []
        monkeypatch.setattr(notifier_module.smtplib, 'SMTP', FakeSMTP)

        result = GatewayNotifier(SMTP).send_email('member@fitclub.pk', 'Payment Reminder',
                                                  '<p>Your fee is due</p>')

        assert result.success is True
        msg = FakeSMTP.sent[0]
        assert msg['To'] == 'member@fitclub.pk'
        assert msg['From'] == 'alerts@fitclub.pk'
        assert msg.get_body(('plain',)).get_content().strip() == 'Your fee is due'
        assert '<p>' in msg.get_body(('html',)).get_content()

    def test_smtp_failure_is_reported(self, monkeypatch):
        monkeypatch.setattr(notifier_module.smtplib, 'SMTP', FakeSMTP)
        config = dict(SMTP, MAIL_PASSWORD='wrong')
        result = GatewayNotifier(config).send_email('member@fitclub.pk', 'Hi', '<p>Hi</p>')
        assert result.success is False
