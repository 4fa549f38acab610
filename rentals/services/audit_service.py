"""
Audit logging service for order history.
Rows are only ever appended; they are read back for the order timeline.
"""
from flask import g, has_request_context
from typing import Optional, Union
from rentals.models import OrderReturnAudit, AuditAction
import logging

logger = logging.getLogger(__name__)


def _current_user_id() -> Optional[int]:
    if not has_request_context():
        return None
    user = g.get('user')
    return user.id if user else None


def log_order_event(
    session,
    order_id: int,
    action: Union[AuditAction, str],
    previous_status: str = None,
    new_status: str = None,
    notes: str = None,
    order_item_id: int = None,
    user_id: int = None
) -> Optional[OrderReturnAudit]:
    """
    Append an audit row for an order (or one of its items).

    Args:
        session: Database session
        order_id: Order affected
        action: AuditAction value
        previous_status / new_status: Order or item status before and after
        notes: Human readable summary shown on the timeline
        order_item_id: Item affected, if the action concerns a single item
        user_id: Acting staff member; defaults to the logged-in user
    """
    action_value = action.value if isinstance(action, AuditAction) else action
    try:
        entry = OrderReturnAudit(
            order_id=order_id,
            order_item_id=order_item_id,
            action=action_value,
            previous_status=previous_status,
            new_status=new_status,
            user_id=user_id if user_id is not None else _current_user_id(),
            notes=notes,
        )
        session.add(entry)
        # Note: Caller is responsible for committing the session
        logger.info(f"Audit: {action_value} on order {order_id} ({previous_status} -> {new_status})")
        return entry
    except Exception as e:
        logger.error(f"Failed to create audit entry for order {order_id}: {e}")
        return None


def get_order_audit(session, order_id: int, limit: int = 100):
    """Audit rows of an order, newest first."""
    return session.query(OrderReturnAudit).filter(
        OrderReturnAudit.order_id == order_id
    ).order_by(
        OrderReturnAudit.created_at.desc(),
        OrderReturnAudit.id.desc()
    ).limit(limit).all()
