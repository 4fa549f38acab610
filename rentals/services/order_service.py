"""
Order service with transactional logic.
Handles order creation, edits, status changes, cancellation and listing.
"""
import logging
import math
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from rentals.exceptions import BusinessLogicError, ConflictError, NotFoundError, ValidationError
from rentals.models import (
    AuditAction, Branch, CLOSED_STATUSES, Customer, Order, OrderItem, OrderStatus, Profile
)
from rentals.services.audit_service import get_order_audit, log_order_event
from rentals.services.cache_service import invalidate_branch_modules
from rentals.services.invoice_service import generate_unique_invoice_number, invoice_number_exists
from rentals.services.order_draft_service import DraftItem, OrderDraft, TaxConfig, calculate_draft_totals
from rentals.services.order_status_service import (
    DisplayCategory, calculate_days, can_cancel_order, can_edit_order,
    order_display_category, resolve_order_status
)
from rentals.utils.formatters import TWO_PLACES, like_pattern, quantize_money
from rentals.utils.validators import (
    parse_datetime, validate_date_range, validate_late_fee, validate_order_item
)

logger = logging.getLogger(__name__)


# =====================================================
# SERIALIZATION
# =====================================================

def serialize_order(order: Order, include_items: bool = True, now: Optional[datetime] = None,
                    cancel_window_minutes: int = 5, edit_window_minutes: int = 10) -> Dict[str, Any]:
    """Order JSON with the derived display fields."""
    now = now or datetime.now()
    data = order.to_dict(include_items=include_items)
    data['display_category'] = order_display_category(order, now=now)
    data['resolved_status'] = resolve_order_status(order.start_date, order.end_date, order.status,
                                                   today=now.date())
    data['days'] = calculate_days(order.start_date, order.end_date)
    data['can_cancel'] = can_cancel_order(order, cancel_window_minutes, now=now)
    data['can_edit'] = can_edit_order(order, edit_window_minutes, now=now)
    return data


# =====================================================
# PRIVATE HELPERS
# =====================================================

def _parse_items(items_data: List[Dict[str, Any]]) -> List[DraftItem]:
    """Validate and normalize item payloads."""
    if not items_data:
        raise ValidationError('An order needs at least one item', field='items')

    items = []
    for index, data in enumerate(items_data, start=1):
        result = validate_order_item(data)
        if not result.is_valid:
            raise ValidationError(f'Item {index}: {result.error}', field='items')
        items.append(DraftItem.from_dict(data))
    return items


def _parse_window(start, end):
    result = validate_date_range(start, end)
    if not result.is_valid:
        raise ValidationError(result.error, field='end_date')
    return parse_datetime(start), parse_datetime(end)


def _initial_status(start_dt: datetime, today: date) -> str:
    return OrderStatus.SCHEDULED.value if start_dt.date() > today else OrderStatus.ACTIVE.value


def _resolve_branch_id(session, staff: Profile, branch_id) -> int:
    """Staff bill to their own branch; super admins must pick one."""
    if not staff.is_super_admin() and staff.branch_id is not None:
        branch_id = staff.branch_id
    if branch_id in (None, ''):
        raise ValidationError('Branch is required', field='branch_id')
    branch = session.query(Branch).filter(Branch.id == int(branch_id)).first()
    if not branch:
        raise NotFoundError('Branch not found')
    if not branch.is_active:
        raise BusinessLogicError(f'Branch "{branch.name}" is inactive')
    return branch.id


def _get_active_customer(session, customer_id) -> Customer:
    if customer_id in (None, ''):
        raise ValidationError('Customer is required', field='customer_id')
    customer = session.query(Customer).filter(Customer.id == int(customer_id)).first()
    if not customer:
        raise NotFoundError('Customer not found')
    if not customer.is_active:
        raise BusinessLogicError(f'Customer "{customer.name}" is inactive')
    return customer


def _build_items(items: List[DraftItem]) -> List[OrderItem]:
    return [
        OrderItem(
            photo_url=item.photo_url,
            product_name=item.product_name,
            quantity=item.quantity,
            price_per_day=item.price_per_day,
            days=item.days,
            line_total=item.line_total,
        )
        for item in items
    ]


def _scope_query(query, branch_id: Optional[int]):
    if branch_id is not None:
        query = query.filter(Order.branch_id == branch_id)
    return query


# =====================================================
# QUERIES
# =====================================================

def get_order(session, order_id: int, branch_id: Optional[int] = None) -> Order:
    """Load an order; orders of another branch are reported as not found."""
    query = session.query(Order).options(
        joinedload(Order.customer), joinedload(Order.staff), joinedload(Order.branch)
    ).filter(Order.id == order_id)
    order = _scope_query(query, branch_id).first()
    if not order:
        raise NotFoundError('Order not found')
    return order


def category_filter(category: str, now: datetime):
    """SQL condition matching order_display_category() for one category."""
    today = now.date()
    not_closed = ~Order.status.in_(CLOSED_STATUSES)
    is_late = or_(
        and_(Order.end_datetime.isnot(None), Order.end_datetime < now),
        and_(Order.end_datetime.is_(None), Order.end_date < today),
    )

    if category == DisplayCategory.CANCELLED.value:
        return Order.status == OrderStatus.CANCELLED.value
    if category == DisplayCategory.RETURNED.value:
        return Order.status == OrderStatus.COMPLETED.value
    if category == DisplayCategory.LATE.value:
        return and_(not_closed, is_late)
    if category == DisplayCategory.SCHEDULED.value:
        return and_(not_closed, ~is_late, Order.start_date > today)
    if category == DisplayCategory.ONGOING.value:
        return and_(not_closed, ~is_late, Order.start_date <= today)
    raise ValidationError(f'Unknown order category: {category}', field='category')


def list_orders(
    session,
    branch_id: Optional[int] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = 1,
    per_page: int = 20,
    now: Optional[datetime] = None,
    **serialize_options
) -> Dict[str, Any]:
    """
    Paginated, newest-first order list.

    Args:
        status: stored status filter
        category: display category filter (cancelled/returned/late/scheduled/ongoing)
        search: invoice number, customer name or phone
        start_date / end_date: creation date range (inclusive)
    """
    now = now or datetime.now()
    page = max(int(page or 1), 1)
    per_page = max(int(per_page or 20), 1)

    query = _scope_query(session.query(Order).join(Customer, Order.customer_id == Customer.id), branch_id)

    if status:
        if status not in OrderStatus.values():
            raise ValidationError(f'Unknown order status: {status}', field='status')
        query = query.filter(Order.status == status)
    if category:
        query = query.filter(category_filter(category, now))
    if search:
        term = like_pattern(search)
        query = query.filter(or_(
            func.lower(Order.invoice_number).like(term, escape='\\'),
            func.lower(Customer.name).like(term, escape='\\'),
            Customer.phone.like(term, escape='\\'),
        ))
    if start_date:
        query = query.filter(Order.created_at >= datetime.combine(start_date, time.min))
    if end_date:
        query = query.filter(Order.created_at <= datetime.combine(end_date, time.max))

    total = query.count()
    orders = query.options(
        joinedload(Order.customer), joinedload(Order.staff), joinedload(Order.branch)
    ).order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * per_page).limit(per_page).all()

    return {
        'orders': [serialize_order(o, include_items=False, now=now, **serialize_options) for o in orders],
        'total': total,
        'page': page,
        'per_page': per_page,
        'pages': math.ceil(total / per_page) if total else 0,
    }


def get_order_timeline(session, order_id: int, branch_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """Audit history of an order, newest first, ending with its creation."""
    order = get_order(session, order_id, branch_id)
    events = [entry.to_dict() for entry in get_order_audit(session, order.id)]
    events.append({
        'id': f'created-{order.id}',
        'order_id': order.id,
        'order_item_id': None,
        'action': 'order_created',
        'previous_status': None,
        'new_status': order.status if not events else None,
        'user_id': order.staff_id,
        'user_name': order.staff.full_name if order.staff else None,
        'notes': f'Order {order.invoice_number} created',
        'created_at': order.created_at.isoformat() if order.created_at else None,
    })
    return events


# =====================================================
# MUTATIONS
# =====================================================

def create_order(session, data: Dict[str, Any], staff: Profile, now: Optional[datetime] = None) -> Order:
    """
    Create an order with its items.

    Payload keys: customer_id, start_date, end_date (ISO datetimes), items,
    optional invoice_number and branch_id (super admins only).
    """
    now = now or datetime.now()
    items = _parse_items(data.get('items') or [])
    start_dt, end_dt = _parse_window(data.get('start_date'), data.get('end_date'))

    try:
        branch_id = _resolve_branch_id(session, staff, data.get('branch_id'))
        customer = _get_active_customer(session, data.get('customer_id'))

        invoice_number = str(data.get('invoice_number') or '').strip()
        if invoice_number:
            if invoice_number_exists(session, invoice_number):
                raise ConflictError(f'Invoice number {invoice_number} already exists')
        else:
            invoice_number = generate_unique_invoice_number(session, now)

        totals = calculate_draft_totals(items, TaxConfig.from_profile(staff))

        order = Order(
            invoice_number=invoice_number,
            branch_id=branch_id,
            staff_id=staff.id,
            customer_id=customer.id,
            booking_date=now,
            start_date=start_dt.date(),
            end_date=end_dt.date(),
            start_datetime=start_dt,
            end_datetime=end_dt,
            status=_initial_status(start_dt, now.date()),
            subtotal=totals['subtotal'],
            gst_amount=totals['gst_amount'],
            late_fee=Decimal('0'),
            damage_fee_total=Decimal('0'),
            total_amount=totals['grand_total'],
            created_at=now,
        )
        order.items = _build_items(items)
        session.add(order)
        session.commit()

        logger.info(f"Order created: {order.invoice_number} ({order.status}) total={order.total_amount}")
        invalidate_branch_modules(order.branch_id)
        return order

    except IntegrityError:
        session.rollback()
        raise ConflictError('An order with this invoice number already exists')
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except Exception as e:
        session.rollback()
        logger.exception(f"Error creating order: {e}")
        raise Exception(f'Error creating order: {str(e)}')


def create_order_from_draft(session, draft: OrderDraft, staff: Profile, branch_id: Optional[int] = None,
                            now: Optional[datetime] = None) -> Order:
    """Persist a session draft as a new order."""
    return create_order(session, {
        'customer_id': draft.customer_id,
        'start_date': draft.start_date,
        'end_date': draft.end_date,
        'invoice_number': draft.invoice_number,
        'branch_id': branch_id,
        'items': [item.to_dict() for item in draft.items],
    }, staff, now=now)


def update_order(session, order_id: int, data: Dict[str, Any], staff: Profile,
                 branch_id: Optional[int] = None, edit_window_minutes: int = 10,
                 now: Optional[datetime] = None) -> Order:
    """
    Edit an order: dates, customer, invoice number and a full replacement of
    its items. Late and damage fees already charged are kept in the total.
    """
    now = now or datetime.now()
    try:
        order = get_order(session, order_id, branch_id)
        if not can_edit_order(order, edit_window_minutes, now=now):
            raise BusinessLogicError(f'Order {order.invoice_number} can no longer be edited')

        items = _parse_items(data.get('items') or [])
        start_dt, end_dt = _parse_window(
            data.get('start_date', order.start_datetime),
            data.get('end_date', order.end_datetime),
        )

        if data.get('customer_id') not in (None, '') and int(data['customer_id']) != order.customer_id:
            order.customer_id = _get_active_customer(session, data['customer_id']).id

        invoice_number = str(data.get('invoice_number') or '').strip()
        if invoice_number and invoice_number != order.invoice_number:
            if invoice_number_exists(session, invoice_number, exclude_order_id=order.id):
                raise ConflictError(f'Invoice number {invoice_number} already exists')
            order.invoice_number = invoice_number

        previous_status = order.status
        totals = calculate_draft_totals(items, TaxConfig.from_profile(staff))

        order.items = _build_items(items)
        order.start_date = start_dt.date()
        order.end_date = end_dt.date()
        order.start_datetime = start_dt
        order.end_datetime = end_dt
        order.status = _initial_status(start_dt, now.date())
        order.subtotal = totals['subtotal']
        order.gst_amount = totals['gst_amount']
        order.total_amount = (
            totals['grand_total'] + (order.late_fee or Decimal('0')) + (order.damage_fee_total or Decimal('0'))
        ).quantize(TWO_PLACES)

        log_order_event(
            session, order.id, AuditAction.ORDER_UPDATED,
            previous_status=previous_status, new_status=order.status,
            notes=f'Order edited ({len(items)} items)', user_id=staff.id,
        )
        session.commit()
        invalidate_branch_modules(order.branch_id)
        return order

    except IntegrityError:
        session.rollback()
        raise ConflictError('An order with this invoice number already exists')
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except Exception as e:
        session.rollback()
        logger.exception(f"Error updating order {order_id}: {e}")
        raise Exception(f'Error updating order: {str(e)}')


def update_order_status(session, order_id: int, status: str, late_fee=None, user_id: Optional[int] = None,
                        branch_id: Optional[int] = None) -> Order:
    """
    Set the stored status and, optionally, replace the late fee.

    The total drops the previous late fee and adds the new one.
    """
    if status not in OrderStatus.values():
        raise ValidationError(f'Unknown order status: {status}', field='status')

    try:
        order = get_order(session, order_id, branch_id)
        previous_status = order.status
        if previous_status in CLOSED_STATUSES and status != previous_status:
            raise BusinessLogicError(f'Cannot change the status of a {previous_status} order')
        old_late_fee = order.late_fee or Decimal('0')

        if late_fee is None or late_fee == '':
            new_late_fee = old_late_fee
        else:
            fee_result = validate_late_fee(late_fee)
            if not fee_result.is_valid:
                raise ValidationError(fee_result.error, field='late_fee')
            new_late_fee = quantize_money(fee_result.clamped_value)

        new_total = ((order.total_amount or Decimal('0')) - old_late_fee + new_late_fee).quantize(TWO_PLACES)
        if new_total < 0:
            raise BusinessLogicError(f'Calculated order total is negative: {new_total}')

        order.status = status
        order.late_fee = new_late_fee
        order.total_amount = new_total

        notes = f'Status changed from {previous_status} to {status}'
        if new_late_fee != old_late_fee:
            notes += f', late fee {quantize_money(new_late_fee)}'
        log_order_event(
            session, order.id, AuditAction.ORDER_STATUS_UPDATED,
            previous_status=previous_status, new_status=status, notes=notes, user_id=user_id,
        )
        session.commit()
        invalidate_branch_modules(order.branch_id)
        return order

    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except Exception as e:
        session.rollback()
        logger.exception(f"Error updating status of order {order_id}: {e}")
        raise Exception(f'Error updating order status: {str(e)}')


def cancel_order(session, order_id: int, user_id: Optional[int] = None, branch_id: Optional[int] = None,
                 window_minutes: int = 5, now: Optional[datetime] = None) -> Order:
    """Cancel a future booking shortly after it was made."""
    now = now or datetime.now()
    try:
        order = get_order(session, order_id, branch_id)
        if not can_cancel_order(order, window_minutes, now=now):
            raise BusinessLogicError(
                f'Order {order.invoice_number} cannot be cancelled: only future bookings can be '
                f'cancelled, within {window_minutes} minutes of creation'
            )

        previous_status = order.status
        order.status = OrderStatus.CANCELLED.value
        log_order_event(
            session, order.id, AuditAction.ORDER_CANCELLED,
            previous_status=previous_status, new_status=order.status,
            notes='Booking cancelled', user_id=user_id,
        )
        session.commit()
        logger.info(f"Order cancelled: {order.invoice_number}")
        invalidate_branch_modules(order.branch_id)
        return order

    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e


def auto_cancel_expired_scheduled_orders(session, now: Optional[datetime] = None) -> int:
    """
    Cancel scheduled orders whose start has already passed without the
    rental being activated. Returns the number of cancelled orders.
    """
    now = now or datetime.now()
    try:
        expired = session.query(Order).filter(
            Order.status == OrderStatus.SCHEDULED.value,
            or_(
                Order.start_datetime < now,
                and_(Order.start_datetime.is_(None), Order.start_date < now.date()),
            )
        ).all()

        branch_ids = set()
        for order in expired:
            order.status = OrderStatus.CANCELLED.value
            branch_ids.add(order.branch_id)
            log_order_event(
                session, order.id, AuditAction.AUTO_CANCELLED,
                previous_status=OrderStatus.SCHEDULED.value,
                new_status=OrderStatus.CANCELLED.value,
                notes='Scheduled order expired before it started',
            )
        session.commit()

        for branch_id in branch_ids:
            invalidate_branch_modules(branch_id)
        if expired:
            logger.info(f"Auto-cancelled {len(expired)} expired scheduled orders")
        return len(expired)

    except Exception as e:
        session.rollback()
        logger.exception(f"Error auto-cancelling scheduled orders: {e}")
        raise
