import os
from datetime import timedelta

basedir = os.path.abspath(os.path.dirname(__file__))


# Billing / access policy
PAYMENT_GRACE_PERIOD = timedelta(days=30)
REMINDER_WINDOW = timedelta(days=3)
MEMBERSHIP_TERM_YEARS = 1

# Attendance policy
SESSION_TIMEOUT = timedelta(hours=24)
AUTO_CHECKOUT_ESTIMATE = timedelta(hours=2)
ATTENDANCE_RETENTION = timedelta(days=90)
ACCESS_LOG_RETENTION = timedelta(days=90)
DEVICE_ONLINE_WINDOW = timedelta(minutes=5)


def _env_flag(name, default='0'):
    return os.environ.get(name, default) not in ('0', 'false', 'False', '')


def engine_options(uri, timeout):
    """
    Engine options that bound every wait on the datastore to `timeout`
    seconds: connecting, taking a pooled connection and waiting on locks.
    """
    if uri.startswith('sqlite'):
        # busy timeout; SQLite has no connect or statement timeout
        return {'connect_args': {'timeout': timeout}}

    options = {'pool_pre_ping': True, 'pool_timeout': timeout}
    if uri.startswith('postgresql'):
        millis = int(timeout * 1000)
        options['connect_args'] = {
            'connect_timeout': max(int(timeout), 1),
            'options': f'-c statement_timeout={millis} -c lock_timeout={millis}'
        }
    return options


class Config:
    """Base configuration"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # API keys: door devices and back-office operators
    DOOR_API_KEY = os.environ.get('DOOR_API_KEY') or 'door-api-key'
    ADMIN_API_KEY = os.environ.get('ADMIN_API_KEY') or 'admin-api-key'

    # Local operating timezone (calendar days, cron triggers, message dates)
    GYM_TIMEZONE = os.environ.get('GYM_TIMEZONE', 'Asia/Karachi')

    # Seconds a door evaluation waits for the member's critical section
    GATE_LOCK_TIMEOUT = float(os.environ.get('GATE_LOCK_TIMEOUT', 5))

    # Seconds any datastore wait (connect, pool checkout, row lock) may take
    DB_TIMEOUT = float(os.environ.get('DB_TIMEOUT', 10))

    # Scheduler (crontab expressions, evaluated in GYM_TIMEZONE)
    SCHEDULER_ENABLED = _env_flag('SCHEDULER_ENABLED')
    PAYMENT_CHECK_CRON = os.environ.get('PAYMENT_CHECK_CRON', '0 0 * * *')
    SMS_REMINDER_CRON = os.environ.get('SMS_REMINDER_CRON', '0 9 * * *')
    MONTHLY_PAYMENT_CRON = os.environ.get('MONTHLY_PAYMENT_CRON', '0 1 1 * *')
    LOG_CLEANUP_CRON = os.environ.get('LOG_CLEANUP_CRON', '0 2 * * sun')
    ATTENDANCE_CLEANUP_CRON = os.environ.get('ATTENDANCE_CLEANUP_CRON', '0 3 * * *')
    DAILY_REPORT_CRON = os.environ.get('DAILY_REPORT_CRON', '0 8 * * *')

    # SMS (Twilio REST API)
    TWILIO_ACCOUNT_SID = os.environ.get('TWILIO_ACCOUNT_SID')
    TWILIO_AUTH_TOKEN = os.environ.get('TWILIO_AUTH_TOKEN')
    TWILIO_PHONE_NUMBER = os.environ.get('TWILIO_PHONE_NUMBER')

    # Email (SMTP)
    MAIL_SERVER = os.environ.get('MAIL_SERVER')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', 587))
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_SENDER = os.environ.get('MAIL_SENDER') or 'Gym Management System <no-reply@gym.local>'
    NOTIFIER_TIMEOUT = 10

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE')

    # Pagination
    ITEMS_PER_PAGE = int(os.environ.get('ITEMS_PER_PAGE', 50))


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, '..', 'instance', 'gymaccess.db')
    SQLALCHEMY_ENGINE_OPTIONS = engine_options(SQLALCHEMY_DATABASE_URI, Config.DB_TIMEOUT)


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, '..', 'instance', 'gymaccess.db')

    # Fix for Railway/Render PostgreSQL URL
    if SQLALCHEMY_DATABASE_URI and SQLALCHEMY_DATABASE_URI.startswith('postgres://'):
        SQLALCHEMY_DATABASE_URI = SQLALCHEMY_DATABASE_URI.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_ENGINE_OPTIONS = engine_options(SQLALCHEMY_DATABASE_URI, Config.DB_TIMEOUT)


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SCHEDULER_ENABLED = False
    DOOR_API_KEY = 'test-door-key'
    ADMIN_API_KEY = 'test-admin-key'
    GATE_LOCK_TIMEOUT = 1
    DB_TIMEOUT = 1
    SQLALCHEMY_ENGINE_OPTIONS = engine_options(SQLALCHEMY_DATABASE_URI, DB_TIMEOUT)


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
