"""
Outbound notifications (SMS and email).

Sends are best effort: a failure is logged and reported in the returned
NotificationResult, never raised to the caller.
"""
import logging
import re
import smtplib
from collections import namedtuple
from email.message import EmailMessage

import requests
from flask import current_app

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = 'https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json'

NotificationResult = namedtuple('NotificationResult', ['success', 'error', 'message_id'])
NotificationResult.__new__.__defaults__ = (None, None)


class Notifier:
    """Interface for notification transports"""

    def send_sms(self, phone, message):
        raise NotImplementedError

    def send_email(self, to, subject, html):
        raise NotImplementedError


class GatewayNotifier(Notifier):
    """SMS through the Twilio REST API, email through SMTP"""

    def __init__(self, config):
        self.account_sid = config.get('TWILIO_ACCOUNT_SID')
        self.auth_token = config.get('TWILIO_AUTH_TOKEN')
        self.from_number = config.get('TWILIO_PHONE_NUMBER')
        self.mail_server = config.get('MAIL_SERVER')
        self.mail_port = config.get('MAIL_PORT', 587)
        self.mail_username = config.get('MAIL_USERNAME')
        self.mail_password = config.get('MAIL_PASSWORD')
        self.mail_sender = config.get('MAIL_SENDER')
        self.timeout = config.get('NOTIFIER_TIMEOUT', 10)

    @property
    def sms_configured(self):
        return bool(self.account_sid and self.auth_token and self.from_number)

    @property
    def email_configured(self):
        return bool(self.mail_server and self.mail_username and self.mail_password)

    def send_sms(self, phone, message):
        if not self.sms_configured:
            logger.warning("Twilio credentials not configured, SMS not sent")
            return NotificationResult(False, 'SMS service not configured')
        if not phone:
            return NotificationResult(False, 'No phone number')

        try:
            response = requests.post(
                TWILIO_MESSAGES_URL.format(sid=self.account_sid),
                data={'To': phone, 'From': self.from_number, 'Body': message},
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to send SMS to {phone}: {e}")
            return NotificationResult(False, str(e))

        try:
            data = response.json()
        except ValueError:
            data = {'message': response.text}

        if not response.ok:
            error = f"{response.status_code}: {data.get('message', response.reason)}"
            logger.error(f"Failed to send SMS to {phone}: {error}")
            return NotificationResult(False, error)

        logger.info(f"SMS sent successfully to {phone} (sid={data.get('sid')})")
        return NotificationResult(True, message_id=data.get('sid'))

    def send_email(self, to, subject, html):
        if not self.email_configured:
            logger.warning("Email credentials not configured, email not sent")
            return NotificationResult(False, 'Email service not configured')
        if not to:
            return NotificationResult(False, 'No email address')

        msg = EmailMessage()
        msg['Subject'] = subject
        msg['From'] = self.mail_sender or self.mail_username
        msg['To'] = to
        msg.set_content(re.sub(r'<[^>]*>', '', html))
        msg.add_alternative(html, subtype='html')

        try:
            with smtplib.SMTP(self.mail_server, self.mail_port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.mail_username, self.mail_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to}: {e}")
            return NotificationResult(False, str(e))

        logger.info(f"Email sent successfully to {to}: {subject}")
        return NotificationResult(True, message_id=msg.get('Message-ID'))


class LoggingNotifier(Notifier):
    """Dry-run transport: writes the message to the log instead of sending"""

    def send_sms(self, phone, message):
        logger.info(f"[dry-run] SMS to {phone}: {message}")
        return NotificationResult(True, message_id='dry-run')

    def send_email(self, to, subject, html):
        logger.info(f"[dry-run] Email to {to}: {subject}")
        return NotificationResult(True, message_id='dry-run')


def build_notifier(config):
    """GatewayNotifier when any transport is configured, LoggingNotifier otherwise"""
    notifier = GatewayNotifier(config)
    if notifier.sms_configured or notifier.email_configured:
        return notifier
    return LoggingNotifier()


def get_notifier():
    """Notifier installed on the current application"""
    notifier = current_app.extensions.get('notifier')
    if notifier is None:
        notifier = current_app.extensions['notifier'] = build_notifier(current_app.config)
    return notifier
