"""Customer service: records, search and outstanding dues."""
import logging
import math
import re
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from rentals.exceptions import BusinessLogicError, ConflictError, NotFoundError, ValidationError
from rentals.models import Customer, IdProofType, Order, OrderStatus
from rentals.services.cache_service import invalidate_branch_modules
from rentals.utils.formatters import like_pattern, money_str
from rentals.utils.validators import validate_phone

logger = logging.getLogger(__name__)

CUSTOMER_NUMBER_PREFIX = 'GLA'
CUSTOMER_NUMBER_DIGITS = 5

# Orders whose totals are still owed by the customer
DUE_STATUSES = (OrderStatus.ACTIVE.value, OrderStatus.PENDING_RETURN.value)

EDITABLE_FIELDS = (
    'name', 'phone', 'email', 'address',
    'id_proof_type', 'id_proof_number', 'id_proof_front_url', 'id_proof_back_url',
)


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _get_customer_data(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Extract, sanitize and validate customer fields."""
    cleaned = {key: _clean(data.get(key)) for key in EDITABLE_FIELDS if not partial or key in data}

    if not partial or 'name' in cleaned:
        if not cleaned.get('name'):
            raise ValidationError('Customer name is required', field='name')

    if not partial or 'phone' in cleaned:
        phone_result = validate_phone(cleaned.get('phone'))
        if not phone_result.is_valid:
            raise ValidationError(phone_result.error, field='phone')

    proof_type = cleaned.get('id_proof_type')
    if proof_type:
        proof_type = proof_type.lower()
        if proof_type not in [t.value for t in IdProofType]:
            raise ValidationError(f'Invalid ID proof type: {proof_type}', field='id_proof_type')
        cleaned['id_proof_type'] = proof_type

    return cleaned


def generate_customer_number(session, prefix: str = CUSTOMER_NUMBER_PREFIX) -> str:
    """Next sequential customer number, e.g. GLA-00042."""
    last_number = session.query(func.max(Customer.customer_number)).filter(
        Customer.customer_number.like(f'{prefix}-%')
    ).scalar()

    next_value = 1
    if last_number:
        match = re.search(r'(\d+)$', last_number)
        if match:
            next_value = int(match.group(1)) + 1
    return f'{prefix}-{next_value:0{CUSTOMER_NUMBER_DIGITS}d}'


def _ensure_phone_available(session, phone: str, exclude_id: Optional[int] = None) -> None:
    query = session.query(Customer.id).filter(Customer.phone == phone)
    if exclude_id:
        query = query.filter(Customer.id != exclude_id)
    if query.first():
        raise ConflictError('A customer with this phone number already exists')


def get_customer(session, customer_id: int) -> Customer:
    customer = session.query(Customer).filter(Customer.id == customer_id).first()
    if not customer:
        raise NotFoundError('Customer not found')
    return customer


def create_customer(session, data: Dict[str, Any], prefix: str = CUSTOMER_NUMBER_PREFIX) -> Customer:
    """Create a customer with the next customer number."""
    fields = _get_customer_data(data)
    try:
        _ensure_phone_available(session, fields['phone'])
        customer = Customer(customer_number=generate_customer_number(session, prefix), is_active=True, **fields)
        session.add(customer)
        session.commit()
        logger.info(f"Customer created: {customer.customer_number} ({customer.name})")
        return customer
    except IntegrityError:
        session.rollback()
        raise ConflictError('A customer with this phone number already exists')
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e


def update_customer(session, customer_id: int, data: Dict[str, Any]) -> Customer:
    fields = _get_customer_data(data, partial=True)
    try:
        customer = get_customer(session, customer_id)
        if 'phone' in fields:
            _ensure_phone_available(session, fields['phone'], exclude_id=customer.id)
        for key, value in fields.items():
            setattr(customer, key, value)
        session.commit()
        invalidate_branch_modules(None)
        return customer
    except IntegrityError:
        session.rollback()
        raise ConflictError('A customer with this phone number already exists')
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e


def set_customer_active(session, customer_id: int, is_active: Optional[bool] = None) -> Customer:
    """Set or toggle the active flag."""
    customer = get_customer(session, customer_id)
    customer.is_active = (not customer.is_active) if is_active is None else bool(is_active)
    session.commit()
    return customer


def delete_customer(session, customer_id: int) -> None:
    """Delete a customer; refused while any order references them."""
    customer = get_customer(session, customer_id)
    order_count = session.query(func.count(Order.id)).filter(Order.customer_id == customer.id).scalar() or 0
    if order_count:
        raise BusinessLogicError(
            f'Cannot delete customer "{customer.name}": {order_count} order(s) reference this customer'
        )
    try:
        session.delete(customer)
        session.commit()
        logger.info(f"Customer deleted: {customer.customer_number}")
    except IntegrityError:
        session.rollback()
        raise BusinessLogicError(f'Cannot delete customer "{customer.name}": orders reference this customer')


def _due_amounts_subquery(session):
    return session.query(
        Order.customer_id.label('customer_id'),
        func.coalesce(func.sum(Order.total_amount), 0).label('due_amount')
    ).filter(
        Order.status.in_(DUE_STATUSES)
    ).group_by(Order.customer_id).subquery()


def list_customers(session, search: Optional[str] = None, page: int = 1, per_page: int = 20,
                   active_only: bool = False) -> Dict[str, Any]:
    """
    Paginated customer list with due amounts.

    Search matches name, phone or customer number (case-insensitive).
    """
    page = max(int(page or 1), 1)
    per_page = max(int(per_page or 20), 1)
    dues = _due_amounts_subquery(session)

    query = session.query(Customer, dues.c.due_amount).outerjoin(dues, dues.c.customer_id == Customer.id)
    if active_only:
        query = query.filter(Customer.is_active == True)
    if search:
        term = like_pattern(search)
        query = query.filter(or_(
            func.lower(Customer.name).like(term, escape='\\'),
            Customer.phone.like(term, escape='\\'),
            func.lower(Customer.customer_number).like(term, escape='\\'),
        ))

    total = query.count()
    rows = query.order_by(Customer.created_at.desc(), Customer.id.desc()).offset(
        (page - 1) * per_page
    ).limit(per_page).all()

    customers = []
    for customer, due_amount in rows:
        data = customer.to_dict()
        data['due_amount'] = money_str(due_amount if due_amount is not None else Decimal('0'))
        customers.append(data)

    return {
        'customers': customers,
        'total': total,
        'page': page,
        'per_page': per_page,
        'pages': math.ceil(total / per_page) if total else 0,
    }


def search_customers(session, query_str: str, limit: int = 10):
    """Autocomplete lookup by name or phone (active customers only)."""
    if not query_str or not query_str.strip():
        return []
    term = like_pattern(query_str)
    return session.query(Customer).filter(
        Customer.is_active == True,
        or_(func.lower(Customer.name).like(term, escape='\\'), Customer.phone.like(term, escape='\\'))
    ).order_by(Customer.name).limit(limit).all()


def get_customer_orders(session, customer_id: int, branch_id: Optional[int] = None):
    get_customer(session, customer_id)
    query = session.query(Order).filter(Order.customer_id == customer_id)
    if branch_id is not None:
        query = query.filter(Order.branch_id == branch_id)
    return query.order_by(Order.created_at.desc()).all()
