"""
Staff service: profiles, roles, branch assignment and GST settings.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from rentals.exceptions import (
    BusinessLogicError, ConflictError, NotFoundError, UnauthorizedError, ValidationError
)
from rentals.models import Branch, Order, Profile, UserRole
from rentals.utils.formatters import like_pattern, quantize_money, to_decimal

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
REQUIRED_FIELDS = ('username', 'password', 'full_name', 'phone', 'role')
GST_FIELDS = ('gst_enabled', 'gst_rate', 'gst_included', 'gst_number', 'upi_id')


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _check_can_manage(acting_user: Optional[Profile], role: str, branch_id: Optional[int]) -> None:
    """
    super_admin manages everyone; branch_admin manages non-super-admin staff
    of their own branch; plain staff manage nobody.
    """
    if acting_user is None or acting_user.is_super_admin():
        return
    if acting_user.role != UserRole.BRANCH_ADMIN.value:
        raise UnauthorizedError('You do not have permission to manage staff')
    if role == UserRole.SUPER_ADMIN.value:
        raise UnauthorizedError('Only a super admin can assign the super admin role')
    if branch_id != acting_user.branch_id:
        raise UnauthorizedError('You can only manage staff of your own branch')


def _validate_role_and_branch(session, role: str, branch_id) -> Optional[int]:
    if role not in [r.value for r in UserRole]:
        raise ValidationError(f'Invalid role: {role}', field='role')
    if branch_id in (None, ''):
        if role == UserRole.SUPER_ADMIN.value:
            return None
        raise ValidationError('Branch is required for branch admins and staff', field='branch_id')
    try:
        branch_id = int(branch_id)
    except (TypeError, ValueError):
        raise ValidationError('Invalid branch', field='branch_id')
    branch = session.query(Branch).filter(Branch.id == branch_id).first()
    if not branch:
        raise NotFoundError('Branch not found')
    return branch.id


def _ensure_username_available(session, username: str, exclude_id: Optional[int] = None) -> None:
    query = session.query(Profile.id).filter(func.lower(Profile.username) == username.lower())
    if exclude_id:
        query = query.filter(Profile.id != exclude_id)
    if query.first():
        raise ConflictError(f'Username "{username}" already exists')


def _apply_gst_settings(profile: Profile, data: Dict[str, Any]) -> None:
    if 'gst_enabled' in data:
        profile.gst_enabled = _as_bool(data['gst_enabled'])
    if 'gst_included' in data:
        profile.gst_included = _as_bool(data['gst_included'])
    if 'gst_rate' in data:
        rate = to_decimal(data['gst_rate'], default=None)
        if rate is None or rate < 0 or rate > 100:
            raise ValidationError('GST rate must be between 0 and 100', field='gst_rate')
        profile.gst_rate = quantize_money(rate)
    if 'gst_number' in data:
        profile.gst_number = (data.get('gst_number') or '').strip().upper() or None
    if 'upi_id' in data:
        profile.upi_id = (data.get('upi_id') or '').strip() or None


def get_staff(session, staff_id: int) -> Profile:
    profile = session.query(Profile).filter(Profile.id == staff_id).first()
    if not profile:
        raise NotFoundError('Staff member not found')
    return profile


def list_staff(session, branch_id: Optional[int] = None, search: Optional[str] = None):
    query = session.query(Profile)
    if branch_id is not None:
        query = query.filter(Profile.branch_id == branch_id)
    if search:
        term = like_pattern(search)
        query = query.filter(or_(
            func.lower(Profile.full_name).like(term, escape='\\'),
            func.lower(Profile.username).like(term, escape='\\'),
            Profile.phone.like(term, escape='\\'),
        ))
    return query.order_by(Profile.full_name).all()


def create_staff(session, data: Dict[str, Any], acting_user: Optional[Profile] = None) -> Profile:
    """Create a staff profile with a login."""
    missing = [f for f in REQUIRED_FIELDS if not str(data.get(f) or '').strip()]
    if missing:
        raise ValidationError(f'All fields are required (missing: {", ".join(missing)})', field=missing[0])

    password = data['password']
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters', field='password')

    role = data['role'].strip()
    try:
        branch_id = _validate_role_and_branch(session, role, data.get('branch_id'))
        _check_can_manage(acting_user, role, branch_id)

        username = data['username'].strip()
        _ensure_username_available(session, username)

        profile = Profile(
            username=username,
            full_name=data['full_name'].strip(),
            phone=data['phone'].strip(),
            role=role,
            branch_id=branch_id,
            is_active=True,
        )
        profile.set_password(password)
        _apply_gst_settings(profile, data)
        session.add(profile)
        session.commit()
        logger.info(f"Staff created: {profile.username} ({profile.role}) branch={profile.branch_id}")
        return profile
    except IntegrityError:
        session.rollback()
        raise ConflictError('A staff member with this username already exists')
    except (BusinessLogicError, NotFoundError, UnauthorizedError) as e:
        session.rollback()
        raise e


def update_staff(session, staff_id: int, data: Dict[str, Any], acting_user: Optional[Profile] = None) -> Profile:
    try:
        profile = get_staff(session, staff_id)
        _check_can_manage(acting_user, profile.role, profile.branch_id)

        role = (data.get('role') or profile.role).strip()
        branch_id = data['branch_id'] if 'branch_id' in data else profile.branch_id
        branch_id = _validate_role_and_branch(session, role, branch_id)
        _check_can_manage(acting_user, role, branch_id)
        profile.role = role
        profile.branch_id = branch_id

        if data.get('username'):
            username = data['username'].strip()
            _ensure_username_available(session, username, exclude_id=profile.id)
            profile.username = username
        if data.get('full_name'):
            profile.full_name = data['full_name'].strip()
        if 'phone' in data:
            profile.phone = (data.get('phone') or '').strip() or None
        if data.get('password'):
            if len(data['password']) < MIN_PASSWORD_LENGTH:
                raise ValidationError(
                    f'Password must be at least {MIN_PASSWORD_LENGTH} characters', field='password'
                )
            profile.set_password(data['password'])
        if 'is_active' in data:
            profile.is_active = _as_bool(data['is_active'])
        _apply_gst_settings(profile, data)

        session.commit()
        return profile
    except IntegrityError:
        session.rollback()
        raise ConflictError('A staff member with this username already exists')
    except (BusinessLogicError, NotFoundError, UnauthorizedError) as e:
        session.rollback()
        raise e


def set_staff_active(session, staff_id: int, is_active: Optional[bool] = None,
                     acting_user: Optional[Profile] = None) -> Profile:
    profile = get_staff(session, staff_id)
    _check_can_manage(acting_user, profile.role, profile.branch_id)
    if acting_user is not None and acting_user.id == profile.id:
        raise BusinessLogicError('You cannot deactivate your own account')
    profile.is_active = (not profile.can_login) if is_active is None else bool(is_active)
    session.commit()
    logger.info(f"Staff {profile.username} active={profile.is_active}")
    return profile


def delete_staff(session, staff_id: int, acting_user: Optional[Profile] = None) -> None:
    """Delete a staff profile; refused while orders reference them."""
    profile = get_staff(session, staff_id)
    _check_can_manage(acting_user, profile.role, profile.branch_id)
    if acting_user is not None and acting_user.id == profile.id:
        raise BusinessLogicError('You cannot delete your own account')

    order_count = session.query(func.count(Order.id)).filter(Order.staff_id == profile.id).scalar() or 0
    if order_count:
        raise BusinessLogicError(
            f'Cannot delete {profile.full_name}: {order_count} order(s) were created by this staff member. '
            'Deactivate the account instead.'
        )
    try:
        session.delete(profile)
        session.commit()
        logger.info(f"Staff deleted: {profile.username}")
    except IntegrityError:
        session.rollback()
        raise BusinessLogicError(f'Cannot delete {profile.full_name}: records still reference this staff member')


def update_gst_settings(session, profile_id: int, data: Dict[str, Any]) -> Profile:
    """Update the GST configuration used when this profile bills orders."""
    try:
        profile = get_staff(session, profile_id)
        _apply_gst_settings(profile, {key: data[key] for key in GST_FIELDS if key in data})
        session.commit()
        return profile
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e


def create_super_admin(session, username: str, password: str, full_name: str, phone: str = None) -> Profile:
    """Bootstrap account used by the CLI."""
    return create_staff(session, {
        'username': username,
        'password': password,
        'full_name': full_name,
        'phone': phone or '0000000000',
        'role': UserRole.SUPER_ADMIN.value,
        'gst_rate': Decimal('5.00'),
    })
