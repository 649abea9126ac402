from functools import wraps
from hmac import compare_digest

from flask import current_app, jsonify, request


def api_key_required(*config_keys):
    """
    Decorator to require one of the configured API keys in X-API-Key

    Usage:
        @api_key_required('DOOR_API_KEY', 'ADMIN_API_KEY')
        def my_view():
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            api_key = request.headers.get('X-API-Key')
            if not api_key:
                return jsonify({'success': False, 'message': 'API key required'}), 401

            for key in config_keys:
                expected_key = current_app.config.get(key)
                if expected_key and compare_digest(api_key, expected_key):
                    return f(*args, **kwargs)

            return jsonify({'success': False, 'message': 'Invalid API key'}), 401
        return decorated_function
    return decorator


def door_key_required(f):
    """Door controllers (the admin key is accepted too)"""
    return api_key_required('DOOR_API_KEY', 'ADMIN_API_KEY')(f)


def admin_key_required(f):
    """Back-office operators only"""
    return api_key_required('ADMIN_API_KEY')(f)
