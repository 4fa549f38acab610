"""Middleware for authentication and branch context."""
from functools import wraps
from flask import session, g, jsonify, current_app
from rentals.database import get_session
from rentals.models import Profile


def load_current_user():
    """
    Load current user and branch scope into g (Flask's per-request global).

    Called before each request. Sets g.user, g.user_id, g.user_role and
    g.branch_id. Super admins see every branch, so their g.branch_id is None.
    """
    g.user = None
    g.user_id = None
    g.user_role = None
    g.branch_id = None

    try:
        user_id = session.get('user_id')
        if not user_id:
            return

        db_session = get_session()
        if not db_session:
            return

        user = db_session.query(Profile).filter_by(id=user_id).first()
        if user is None or not user.can_login:
            # Deactivated or deleted accounts lose their session immediately
            session.clear()
            return

        g.user = user
        g.user_id = user.id
        g.user_role = user.role
        g.branch_id = None if user.is_super_admin() else user.branch_id
    except Exception as e:
        # Avoid crashing the whole app if context loading fails
        current_app.logger.error(f"Error in load_current_user: {e}")


def require_login(f):
    """
    Decorator: Require user to be logged in.

    Returns a 401 JSON error when there is no authenticated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None:
            return jsonify({'status': 'error', 'message': 'Authentication required'}), 401
        return f(*args, **kwargs)
    return decorated_function
