"""
WTForms for the JSON API payloads.

Request bodies are decoded JSON, fed to these forms through
`ApiForm.from_json`. CSRF is off: callers authenticate with an API key,
not a browser session.
"""

from flask_wtf import FlaskForm
from werkzeug.datastructures import ImmutableMultiDict
from wtforms import (
    StringField, BooleanField, SelectField, TextAreaField, DecimalField, DateTimeField
)
from wtforms.validators import DataRequired, Email, Optional, Length, NumberRange, Regexp

from gymaccess.models.member import MEMBERSHIP_TYPES
from gymaccess.models.payment import PAYMENT_TYPES, PAYMENT_METHODS
from gymaccess.models.access_log import ACCESS_TYPES
from gymaccess.services.payment_status import PAYMENT_STATUSES

DATETIME_FORMATS = ['%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M', '%Y-%m-%d %H:%M:%S', '%Y-%m-%d']

IDENTIFIER = Regexp(r'^[A-Za-z0-9_-]{1,50}$', message='Invalid identifier')


class ApiForm(FlaskForm):
    """Base form for API payloads"""

    class Meta:
        csrf = False

    @classmethod
    def from_json(cls, payload):
        """Build the form from a decoded JSON body; nulls count as missing"""
        cleaned = {}
        for key, value in (payload or {}).items():
            if value is None:
                continue
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                value = str(value)
            cleaned[key] = value
        return cls(formdata=ImmutableMultiDict(cleaned))

    def error_messages(self):
        return {name: errors[0] for name, errors in self.errors.items()}


class OperatorMixin:
    """Who is performing the action"""
    performed_by = StringField('Performed by', validators=[DataRequired(), Length(max=64)])


class EnrollMemberForm(ApiForm):
    """Member enrolment form"""
    first_name = StringField('First name', validators=[DataRequired(), Length(max=50)])
    last_name = StringField('Last name', validators=[Optional(), Length(max=50)])
    email = StringField('Email', validators=[DataRequired(), Email(), Length(max=120)])
    phone = StringField('Phone', validators=[Optional(), Length(max=20)])
    membership_type = SelectField('Membership type', choices=[(t, t) for t in MEMBERSHIP_TYPES],
                                  default='basic')
    monthly_fee = DecimalField('Monthly fee', validators=[Optional(), NumberRange(min=0)], default=0)
    membership_start_date = DateTimeField('Start date', format=DATETIME_FORMATS,
                                          validators=[Optional()])
    notes = TextAreaField('Notes', validators=[Optional()])
    created_by = StringField('Created by', validators=[DataRequired(), Length(max=64)])


class ManualAttendanceForm(ApiForm):
    """Operator-recorded check-in/check-out"""
    member_id = StringField('Member ID', validators=[DataRequired(), IDENTIFIER])
    type = SelectField('Type', choices=[(t, t) for t in ACCESS_TYPES])
    device_id = StringField('Device ID', validators=[Optional(), IDENTIFIER])
    reason = StringField('Reason', validators=[Optional(), Length(max=255)])
    recorded_by = StringField('Recorded by', validators=[DataRequired(), Length(max=64)])


class PaymentStatusForm(OperatorMixin, ApiForm):
    """Administrative payment status override"""
    payment_status = SelectField('Payment status', choices=[(s, s) for s in PAYMENT_STATUSES])
    payment_date = DateTimeField('Payment date', format=DATETIME_FORMATS, validators=[Optional()])


class DoorAccessForm(OperatorMixin, ApiForm):
    """Enable or disable door access"""
    enabled = BooleanField('Enabled', false_values=(False, 'false', '0', ''))
    reason = StringField('Reason', validators=[Optional(), Length(max=255)])


class DeactivateMemberForm(OperatorMixin, ApiForm):
    reason = StringField('Reason', validators=[Optional(), Length(max=255)])


class PaymentForm(ApiForm):
    """Record a captured payment"""
    member_id = StringField('Member ID', validators=[DataRequired(), IDENTIFIER])
    amount = DecimalField('Amount', validators=[Optional(), NumberRange(min=0)])
    payment_type = SelectField('Payment type', choices=[(t, t) for t in PAYMENT_TYPES],
                               default='membership_fee')
    payment_method = SelectField('Payment method', choices=[(m, m) for m in PAYMENT_METHODS],
                                 default='cash')
    payment_status = SelectField('Payment status',
                                 choices=[('completed', 'completed'), ('pending', 'pending'),
                                          ('failed', 'failed')],
                                 default='completed')
    transaction_id = StringField('Transaction ID', validators=[Optional(), Length(max=100)])
    payment_date = DateTimeField('Payment date', format=DATETIME_FORMATS, validators=[Optional()])
    due_date = DateTimeField('Due date', format=DATETIME_FORMATS, validators=[Optional()])
    period_start = DateTimeField('Period start', format=DATETIME_FORMATS, validators=[Optional()])
    period_end = DateTimeField('Period end', format=DATETIME_FORMATS, validators=[Optional()])
    notes = TextAreaField('Notes', validators=[Optional()])
    processed_by = StringField('Processed by', validators=[DataRequired(), Length(max=64)])


class CompletePaymentForm(ApiForm):
    """Settle a pending payment"""
    payment_method = SelectField('Payment method', choices=[(m, m) for m in PAYMENT_METHODS],
                                 default='cash')
    transaction_id = StringField('Transaction ID', validators=[Optional(), Length(max=100)])
    payment_date = DateTimeField('Payment date', format=DATETIME_FORMATS, validators=[Optional()])
    processed_by = StringField('Processed by', validators=[DataRequired(), Length(max=64)])


class RefundForm(ApiForm):
    """Refund a completed payment"""
    refund_amount = DecimalField('Refund amount', validators=[Optional(), NumberRange(min=0)])
    reason = TextAreaField('Reason', validators=[DataRequired()])
    refunded_by = StringField('Refunded by', validators=[DataRequired(), Length(max=64)])
