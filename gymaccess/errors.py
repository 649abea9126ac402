"""
Exception taxonomy.

Policy denials are not exceptions: the gate returns them as AccessDecision
objects. Everything below is raised.
"""


class GymAccessError(Exception):
    """Base class for errors raised by the access core"""


class ValidationError(GymAccessError, ValueError):
    """Malformed input, rejected before any state is touched"""

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field


class AccessSystemError(GymAccessError):
    """Infrastructure failure (datastore unreachable, lock timeout)"""


class MemberNotFound(GymAccessError, LookupError):
    def __init__(self, member_id):
        super().__init__(f'Member not found: {member_id}')
        self.member_id = member_id


class PaymentNotFound(GymAccessError, LookupError):
    def __init__(self, payment_id):
        super().__init__(f'Payment not found: {payment_id}')
        self.payment_id = payment_id


class InvalidSessionTransition(GymAccessError):
    """An attendance session was asked to make an illegal state change"""
