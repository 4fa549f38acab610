"""
Staff management blueprint.
Super admins manage everyone; branch admins manage the staff of their branch.
"""

from flask import Blueprint, request, g, jsonify

from rentals.database import get_session
from rentals.decorators.permissions import require_role, branch_scope
from rentals.exceptions import NotFoundError
from rentals.middleware import require_login
from rentals.models import UserRole
from rentals.services import staff_service

staff_bp = Blueprint('staff', __name__, url_prefix='/staff')

ADMIN_ROLES = (UserRole.SUPER_ADMIN.value, UserRole.BRANCH_ADMIN.value)


def _get_visible_staff(staff_id: int):
    profile = staff_service.get_staff(get_session(), staff_id)
    if g.branch_id is not None and profile.branch_id != g.branch_id:
        raise NotFoundError('Staff member not found')
    return profile


@staff_bp.route('/', methods=['GET'])
@require_login
@require_role(*ADMIN_ROLES)
def list_staff():
    profiles = staff_service.list_staff(
        get_session(),
        branch_id=branch_scope(request.args.get('branch_id')),
        search=request.args.get('q', '').strip() or None,
    )
    return jsonify({'staff': [p.to_dict() for p in profiles]})


@staff_bp.route('/', methods=['POST'])
@require_login
@require_role(*ADMIN_ROLES)
def create_staff():
    payload = request.get_json(silent=True) or {}
    if g.branch_id is not None and not payload.get('branch_id'):
        payload['branch_id'] = g.branch_id
    profile = staff_service.create_staff(get_session(), payload, acting_user=g.user)
    return jsonify({'status': 'ok', 'staff': profile.to_dict()}), 201


@staff_bp.route('/<int:staff_id>', methods=['GET'])
@require_login
@require_role(*ADMIN_ROLES)
def get_staff(staff_id):
    return jsonify({'staff': _get_visible_staff(staff_id).to_dict()})


@staff_bp.route('/<int:staff_id>', methods=['PUT', 'PATCH'])
@require_login
@require_role(*ADMIN_ROLES)
def update_staff(staff_id):
    _get_visible_staff(staff_id)
    profile = staff_service.update_staff(
        get_session(), staff_id, request.get_json(silent=True) or {}, acting_user=g.user
    )
    return jsonify({'status': 'ok', 'staff': profile.to_dict()})


@staff_bp.route('/<int:staff_id>/toggle', methods=['POST'])
@require_login
@require_role(*ADMIN_ROLES)
def toggle_staff(staff_id):
    _get_visible_staff(staff_id)
    is_active = (request.get_json(silent=True) or {}).get('is_active')
    profile = staff_service.set_staff_active(
        get_session(), staff_id, None if is_active is None else bool(is_active), acting_user=g.user
    )
    return jsonify({'status': 'ok', 'staff': profile.to_dict()})


@staff_bp.route('/<int:staff_id>', methods=['DELETE'])
@require_login
@require_role(*ADMIN_ROLES)
def delete_staff(staff_id):
    _get_visible_staff(staff_id)
    staff_service.delete_staff(get_session(), staff_id, acting_user=g.user)
    return jsonify({'status': 'ok'})
