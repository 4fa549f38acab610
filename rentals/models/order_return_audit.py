"""
Order return audit model.
Append-only history of status changes and return actions on orders.
"""
import enum
from datetime import datetime
from sqlalchemy import Column, BigInteger, String, Text, DateTime, ForeignKey, event
from sqlalchemy.orm import relationship
from rentals.database import Base, IdType
from rentals.utils.formatters import iso_or_none


class AuditAction(str, enum.Enum):
    """Enumeration of auditable order actions."""
    MARKED_RETURNED = 'marked_returned'
    MARKED_MISSING = 'marked_missing'
    MARKED_NOT_RETURNED = 'marked_not_returned'
    ITEMS_RETURNED = 'items_returned'
    ORDER_STATUS_UPDATED = 'order_status_updated'
    ORDER_UPDATED = 'order_updated'
    ORDER_CANCELLED = 'order_cancelled'
    AUTO_CANCELLED = 'auto_cancelled'


class OrderReturnAudit(Base):
    """One row per state-changing action on an order or order item."""

    __tablename__ = 'order_return_audit'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    order_item_id = Column(BigInteger, ForeignKey('order_items.id', ondelete='SET NULL'), nullable=True)
    action = Column(String(40), nullable=False, index=True)
    previous_status = Column(String(30), nullable=True)
    new_status = Column(String(30), nullable=True)
    user_id = Column(BigInteger, ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now, index=True)

    # Relationships
    order = relationship('Order', back_populates='audit_entries')
    user = relationship('Profile')

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'order_item_id': self.order_item_id,
            'action': self.action,
            'previous_status': self.previous_status,
            'new_status': self.new_status,
            'user_id': self.user_id,
            'user_name': self.user.full_name if self.user else None,
            'notes': self.notes,
            'created_at': iso_or_none(self.created_at),
        }

    def __repr__(self):
        return f"<OrderReturnAudit {self.action} order={self.order_id} at {self.created_at}>"


@event.listens_for(OrderReturnAudit, 'before_update')
def _reject_audit_update(mapper, connection, target):
    raise ValueError('Audit entries are append-only')
