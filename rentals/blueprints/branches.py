"""Branch administration blueprint (super admins only, listing for everyone)."""

from flask import Blueprint, request, jsonify

from rentals.database import get_session
from rentals.decorators.permissions import require_role
from rentals.middleware import require_login
from rentals.models import UserRole
from rentals.services import branch_service

branches_bp = Blueprint('branches', __name__, url_prefix='/branches')


@branches_bp.route('/', methods=['GET'])
@require_login
def list_branches():
    active_only = request.args.get('active_only', '').lower() in ('1', 'true')
    branches = branch_service.list_branches(get_session(), active_only=active_only)
    return jsonify({'branches': [b.to_dict() for b in branches]})


@branches_bp.route('/', methods=['POST'])
@require_login
@require_role(UserRole.SUPER_ADMIN.value)
def create_branch():
    branch = branch_service.create_branch(get_session(), request.get_json(silent=True) or {})
    return jsonify({'status': 'ok', 'branch': branch.to_dict()}), 201


@branches_bp.route('/<int:branch_id>', methods=['GET'])
@require_login
def get_branch(branch_id):
    return jsonify({'branch': branch_service.get_branch(get_session(), branch_id).to_dict()})


@branches_bp.route('/<int:branch_id>', methods=['PUT', 'PATCH'])
@require_login
@require_role(UserRole.SUPER_ADMIN.value)
def update_branch(branch_id):
    branch = branch_service.update_branch(get_session(), branch_id, request.get_json(silent=True) or {})
    return jsonify({'status': 'ok', 'branch': branch.to_dict()})


@branches_bp.route('/<int:branch_id>/toggle', methods=['POST'])
@require_login
@require_role(UserRole.SUPER_ADMIN.value)
def toggle_branch(branch_id):
    is_active = (request.get_json(silent=True) or {}).get('is_active')
    branch = branch_service.set_branch_active(
        get_session(), branch_id, None if is_active is None else bool(is_active)
    )
    return jsonify({'status': 'ok', 'branch': branch.to_dict()})


@branches_bp.route('/<int:branch_id>', methods=['DELETE'])
@require_login
@require_role(UserRole.SUPER_ADMIN.value)
def delete_branch(branch_id):
    branch_service.delete_branch(get_session(), branch_id)
    return jsonify({'status': 'ok'})
