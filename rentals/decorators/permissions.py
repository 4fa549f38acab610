"""
Permission decorators for role-based access control.
Extends require_login with role checks.
"""

from functools import wraps
from flask import g, jsonify
from rentals.exceptions import ValidationError


def require_role(*allowed_roles):
    """
    Decorator to restrict access to specific roles.

    Usage:
        @require_role('super_admin')
        @require_role('super_admin', 'branch_admin')

    Args:
        *allowed_roles: Variable number of role strings (super_admin, branch_admin, staff)

    Returns:
        Decorator function
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Must be logged in
            if not g.get('user'):
                return jsonify({'status': 'error', 'message': 'Authentication required'}), 401

            # Check role
            user_role = g.get('user_role')

            if not user_role or user_role not in allowed_roles:
                return jsonify({
                    'status': 'error',
                    'message': 'You do not have permission to perform this action'
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def branch_scope(requested_branch_id=None):
    """
    Branch a query should be limited to.

    Branch users are always pinned to their own branch; super admins see
    every branch unless they ask for one.
    """
    user = g.get('user')
    if user is not None and not user.is_super_admin():
        return user.branch_id
    if requested_branch_id in (None, '', 'all'):
        return None
    try:
        return int(requested_branch_id)
    except (TypeError, ValueError):
        raise ValidationError('Invalid branch', field='branch_id')
