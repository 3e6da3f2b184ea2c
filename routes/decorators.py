# routes/decorators.py
"""
Shared decorators for API routes.
"""

from functools import wraps
from flask import jsonify
from flask_login import current_user

ADMIN_ROLES = ('admin', 'compliance')


def roles_required(*roles):
    """Reject with 403 unless the logged-in user holds one of the roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated or current_user.role not in roles:
                return jsonify({'success': False, 'error': 'You do not have access to this feature.'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def admin_required(f):
    """Compliance administration: admin or compliance role."""
    return roles_required(*ADMIN_ROLES)(f)
