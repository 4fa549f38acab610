"""Branch service."""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from rentals.exceptions import BusinessLogicError, NotFoundError, ValidationError
from rentals.models import Branch, Order

logger = logging.getLogger(__name__)


def _get_branch_data(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    fields = {}
    for key in ('name', 'address', 'phone'):
        if partial and key not in data:
            continue
        fields[key] = (data.get(key) or '').strip() or None

    for key in ('name', 'address'):
        if key in fields and not fields[key]:
            raise ValidationError(f'Branch {key} is required', field=key)
    return fields


def get_branch(session, branch_id: int) -> Branch:
    branch = session.query(Branch).filter(Branch.id == branch_id).first()
    if not branch:
        raise NotFoundError('Branch not found')
    return branch


def list_branches(session, active_only: bool = False):
    query = session.query(Branch)
    if active_only:
        query = query.filter(Branch.is_active == True)
    return query.order_by(Branch.name).all()


def create_branch(session, data: Dict[str, Any]) -> Branch:
    fields = _get_branch_data(data)
    branch = Branch(is_active=True, **fields)
    session.add(branch)
    session.commit()
    logger.info(f"Branch created: {branch.name}")
    return branch


def update_branch(session, branch_id: int, data: Dict[str, Any]) -> Branch:
    fields = _get_branch_data(data, partial=True)
    branch = get_branch(session, branch_id)
    for key, value in fields.items():
        setattr(branch, key, value)
    if 'is_active' in data:
        branch.is_active = bool(data['is_active'])
    session.commit()
    return branch


def set_branch_active(session, branch_id: int, is_active: Optional[bool] = None) -> Branch:
    branch = get_branch(session, branch_id)
    branch.is_active = (not branch.is_active) if is_active is None else bool(is_active)
    session.commit()
    return branch


def delete_branch(session, branch_id: int) -> None:
    """Delete a branch without orders; its staff are left unassigned."""
    branch = get_branch(session, branch_id)
    order_count = session.query(func.count(Order.id)).filter(Order.branch_id == branch.id).scalar() or 0
    if order_count:
        raise BusinessLogicError(
            f'Cannot delete branch "{branch.name}": {order_count} order(s) belong to it. '
            'Deactivate it instead.'
        )
    try:
        for profile in list(branch.staff):
            profile.branch_id = None
        session.delete(branch)
        session.commit()
        logger.info(f"Branch deleted: {branch.name}")
    except IntegrityError:
        session.rollback()
        raise BusinessLogicError(f'Cannot delete branch "{branch.name}": records still reference it')
