"""
Authentication blueprint.
Handles login, logout, the current user and their GST settings.
"""

from flask import Blueprint, request, session, g, jsonify
from flask_wtf.csrf import generate_csrf
import logging

from rentals.database import get_session
from rentals.middleware import require_login
from rentals.services.auth_service import authenticate
from rentals.services.staff_service import update_gst_settings

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')


@auth_bp.route('/csrf-token', methods=['GET'])
def csrf_token():
    """Token the client sends back in the X-CSRFToken header."""
    return jsonify({'csrf_token': generate_csrf()})


@auth_bp.route('/login', methods=['POST'])
def login():
    payload = request.get_json(silent=True) or request.form
    profile = authenticate(get_session(), payload.get('username'), payload.get('password'))

    session.clear()
    session['user_id'] = profile.id
    session.permanent = True

    return jsonify({'status': 'ok', 'user': profile.to_dict()})


@auth_bp.route('/logout', methods=['POST'])
def logout():
    """Logout; also drops any order draft kept in the session."""
    if g.get('user'):
        logger.info(f"User logged out: {g.user.username}")
    session.clear()
    return jsonify({'status': 'ok'})


@auth_bp.route('/me', methods=['GET'])
@require_login
def me():
    return jsonify({'user': g.user.to_dict(), 'branch_id': g.branch_id})


@auth_bp.route('/settings/gst', methods=['PUT'])
@require_login
def gst_settings():
    """Update the GST settings applied to orders billed by the current user."""
    payload = request.get_json(silent=True) or {}
    profile = update_gst_settings(get_session(), g.user.id, payload)
    return jsonify({'status': 'ok', 'user': profile.to_dict()})
