"""Models package - exports all SQLAlchemy models."""
from rentals.models.branch import Branch
from rentals.models.profile import Profile, UserRole
from rentals.models.customer import Customer, IdProofType
from rentals.models.order import Order, OrderStatus, CLOSED_STATUSES
from rentals.models.order_item import OrderItem, ReturnStatus
from rentals.models.order_return_audit import OrderReturnAudit, AuditAction

__all__ = [
    'Branch', 'Profile', 'UserRole',
    'Customer', 'IdProofType',
    'Order', 'OrderStatus', 'CLOSED_STATUSES',
    'OrderItem', 'ReturnStatus',
    'OrderReturnAudit', 'AuditAction',
]
