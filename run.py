#!/usr/bin/env python3
"""
Main entry point for the gym door access service
"""
import os
from gymaccess import create_app, db
from gymaccess.models import (
    Member, Payment, AttendanceSession, AttendanceDevice, AccessLog, AuditLog
)

# Create the Flask application
app = create_app(os.getenv('FLASK_ENV', 'development'))


@app.shell_context_processor
def make_shell_context():
    """Make database models available in flask shell"""
    return {
        'db': db,
        'Member': Member,
        'Payment': Payment,
        'AttendanceSession': AttendanceSession,
        'AttendanceDevice': AttendanceDevice,
        'AccessLog': AccessLog,
        'AuditLog': AuditLog
    }


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=5001, debug=True, use_reloader=False)
