"""
Return Service - reconciles item returns into an order status.

determine_order_status() is the pure rule set; process_order_return() applies
a batch of item returns, fees and audit rows in one transaction.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from rentals.exceptions import BusinessLogicError, NotFoundError, ValidationError
from rentals.models import Order, OrderItem, OrderStatus, ReturnStatus, AuditAction, CLOSED_STATUSES
from rentals.services.audit_service import log_order_event
from rentals.services.cache_service import invalidate_branch_modules
from rentals.utils.formatters import TWO_PLACES, format_currency, quantize_money, to_decimal
from rentals.utils.validators import (
    validate_returned_quantity, validate_damage_fee, validate_damage_description, validate_late_fee
)

logger = logging.getLogger(__name__)


def _value(item, name: str, default=None):
    if isinstance(item, dict):
        value = item.get(name, default)
    else:
        value = getattr(item, name, default)
    return default if value is None else value


def _returned_qty(item) -> int:
    return int(_value(item, 'returned_quantity', 0))


def _item_has_damage(item) -> bool:
    fee = to_decimal(_value(item, 'damage_fee', 0))
    description = str(_value(item, 'damage_description', '')).strip()
    return fee > 0 or bool(description)


def _is_fully_returned(item) -> bool:
    return (_value(item, 'return_status') == ReturnStatus.RETURNED.value
            and _returned_qty(item) == int(_value(item, 'quantity', 0)))


def _is_partial(item) -> bool:
    return 0 < _returned_qty(item) < int(_value(item, 'quantity', 0))


def _is_missing(item) -> bool:
    return _value(item, 'return_status') == ReturnStatus.MISSING.value


def determine_order_status(items: Iterable[Any], current_status: str) -> str:
    """
    Resulting order status after a return, in fixed priority:

    1. completed: every item fully returned, nothing damaged or missing
    2. flagged: any damage, partial quantity or missing item
    3. partially_returned: something came back but not everything
    4. otherwise the current status is kept
    """
    items = list(items)
    if not items:
        return current_status

    has_damage = any(_item_has_damage(item) for item in items)
    has_partial = any(_is_partial(item) for item in items)
    has_missing = any(_is_missing(item) for item in items)

    if all(_is_fully_returned(item) for item in items) and not (has_damage or has_missing):
        return OrderStatus.COMPLETED.value

    if has_damage or has_partial or has_missing:
        return OrderStatus.FLAGGED.value

    if any(_returned_qty(item) > 0 for item in items):
        return OrderStatus.PARTIALLY_RETURNED.value

    return current_status


def _return_notes(new_status: str, items: List[OrderItem], damage_total: Decimal) -> str:
    """Timeline text for the order-level return entry."""
    has_damage = any(item.has_damage for item in items)
    has_partial = any(_is_partial(item) for item in items)

    if new_status == OrderStatus.COMPLETED.value:
        return 'All items returned'
    if new_status == OrderStatus.FLAGGED.value:
        if has_damage and has_partial:
            return f'Items returned with damage ({format_currency(damage_total)}) and partial quantities'
        if has_damage:
            return f'Items returned with damage ({format_currency(damage_total)})'
        if has_partial:
            short = sum(1 for item in items if (item.returned_quantity or 0) < item.quantity)
            return f'Partial return: {short} items missing'
        return 'Some items missing'
    if new_status == OrderStatus.PARTIALLY_RETURNED.value:
        return 'Some items returned'
    return 'Return processed'


_ITEM_ACTIONS = {
    ReturnStatus.RETURNED.value: AuditAction.MARKED_RETURNED,
    ReturnStatus.MISSING.value: AuditAction.MARKED_MISSING,
    ReturnStatus.NOT_YET_RETURNED.value: AuditAction.MARKED_NOT_RETURNED,
}


def _apply_item_return(item: OrderItem, data: Dict[str, Any], order_is_late: bool,
                       now: datetime, warnings: List[str]) -> None:
    """Validate one item return and write it onto the item."""
    return_status = data.get('return_status') or ReturnStatus.RETURNED.value
    if return_status not in ReturnStatus.values():
        raise ValidationError(f'Invalid return status: {return_status}', field='return_status')

    if data.get('returned_quantity') not in (None, ''):
        qty_result = validate_returned_quantity(data['returned_quantity'], item.quantity)
        if not qty_result.is_valid:
            raise ValidationError(qty_result.error, field='returned_quantity')
        if qty_result.warning:
            warnings.append(f'{item.product_name or "Item"}: {qty_result.warning}')
        returned_quantity = qty_result.clamped_value
    elif return_status == ReturnStatus.RETURNED.value:
        returned_quantity = item.quantity
    else:
        returned_quantity = item.returned_quantity or 0

    damage_fee = item.damage_fee or Decimal('0')
    if data.get('damage_fee') not in (None, ''):
        fee_result = validate_damage_fee(data['damage_fee'])
        if not fee_result.is_valid:
            raise ValidationError(fee_result.error, field='damage_fee')
        damage_fee = quantize_money(fee_result.clamped_value)

    damage_description = item.damage_description
    if 'damage_description' in data:
        damage_description = (data.get('damage_description') or '').strip() or None

    description_result = validate_damage_description(damage_fee, damage_description)
    if not description_result.is_valid:
        raise ValidationError(description_result.error, field='damage_description')

    item.return_status = return_status
    item.returned_quantity = returned_quantity
    item.damage_fee = damage_fee
    item.damage_description = damage_description
    item.missing_note = (data.get('missing_note') or '').strip() or None

    is_returned = return_status == ReturnStatus.RETURNED.value
    item.actual_return_date = now if is_returned and returned_quantity > 0 else None
    item.late_return = is_returned and order_is_late


def _item_notes(item: OrderItem) -> str:
    if item.return_status == ReturnStatus.MISSING.value:
        return item.missing_note or 'Marked missing'
    if item.return_status == ReturnStatus.RETURNED.value:
        notes = f'Returned {item.returned_quantity} of {item.quantity}'
        if item.has_damage:
            notes += f', damage {format_currency(item.damage_fee)}'
            if item.damage_description:
                notes += f': {item.damage_description}'
        return notes
    return 'Marked not yet returned'


def process_order_return(
    session,
    order_id: int,
    item_returns: List[Dict[str, Any]],
    user_id: Optional[int] = None,
    late_fee=None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Apply a batch of item returns to an order.

    Each entry of item_returns carries item_id, return_status and optionally
    returned_quantity, damage_fee, damage_description and missing_note.
    The late fee replaces the previous one; when omitted it is kept.

    Returns:
        dict with new_status, total_amount, damage_fee_total, late_fee, warnings
    """
    if not item_returns:
        raise BusinessLogicError('No items to return')

    now = now or datetime.now()
    try:
        order = session.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise NotFoundError(f'Order {order_id} not found')
        if order.status in CLOSED_STATUSES:
            raise BusinessLogicError(f'Cannot process returns for a {order.status} order')

        if late_fee is None or late_fee == '':
            new_late_fee = order.late_fee or Decimal('0')
        else:
            fee_result = validate_late_fee(late_fee)
            if not fee_result.is_valid:
                raise ValidationError(fee_result.error, field='late_fee')
            new_late_fee = quantize_money(fee_result.clamped_value)

        previous_status = order.status
        order_is_late = now > order.effective_end
        original_total = (
            (order.total_amount or Decimal('0'))
            - (order.late_fee or Decimal('0'))
            - (order.damage_fee_total or Decimal('0'))
        )

        items_by_id = {item.id: item for item in order.items}
        warnings: List[str] = []
        touched: List[tuple] = []

        for data in item_returns:
            try:
                item_id = int(data.get('item_id'))
            except (TypeError, ValueError):
                raise ValidationError('item_id is required for every returned item', field='item_id')
            item = items_by_id.get(item_id)
            if item is None:
                raise NotFoundError(f'Item {item_id} does not belong to order {order_id}')
            previous_item_status = item.return_status
            _apply_item_return(item, data, order_is_late, now, warnings)
            touched.append((item, previous_item_status))

        damage_total = sum(
            (item.damage_fee or Decimal('0') for item in order.items), Decimal('0')
        ).quantize(TWO_PLACES)
        new_total = (original_total + new_late_fee + damage_total).quantize(TWO_PLACES)
        if new_total < 0:
            raise BusinessLogicError(f'Calculated order total is negative: {new_total}')

        new_status = determine_order_status(order.items, order.status)

        order.status = new_status
        order.late_fee = new_late_fee
        order.damage_fee_total = damage_total
        order.total_amount = new_total
        order.late_returned = order_is_late

        for item, previous_item_status in touched:
            log_order_event(
                session, order.id, _ITEM_ACTIONS[item.return_status],
                previous_status=previous_item_status,
                new_status=item.return_status,
                notes=_item_notes(item),
                order_item_id=item.id,
                user_id=user_id,
            )
        log_order_event(
            session, order.id, AuditAction.ITEMS_RETURNED,
            previous_status=previous_status,
            new_status=new_status,
            notes=_return_notes(new_status, list(order.items), damage_total),
            user_id=user_id,
        )

        session.commit()
        logger.info(f"Return processed for order {order.invoice_number}: {previous_status} -> {new_status}")
        invalidate_branch_modules(order.branch_id)

        return {
            'new_status': new_status,
            'total_amount': new_total,
            'damage_fee_total': damage_total,
            'late_fee': new_late_fee,
            'warnings': warnings,
        }

    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except Exception as e:
        session.rollback()
        logger.exception(f"Error processing return for order {order_id}: {e}")
        raise Exception(f'Error processing return: {str(e)}')
