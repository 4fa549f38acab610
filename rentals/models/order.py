"""Order model."""
import enum
from datetime import datetime, time
from decimal import Decimal
from sqlalchemy import Column, BigInteger, String, Numeric, Date, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from rentals.database import Base, IdType
from rentals.utils.formatters import iso_or_none, money_str


class OrderStatus(str, enum.Enum):
    """Stored order status."""
    SCHEDULED = 'scheduled'
    ACTIVE = 'active'
    PENDING_RETURN = 'pending_return'
    PARTIALLY_RETURNED = 'partially_returned'
    FLAGGED = 'flagged'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

    @classmethod
    def values(cls):
        return [status.value for status in cls]


# Orders in these states no longer accept returns, fees or edits
CLOSED_STATUSES = (OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value)


class Order(Base):
    """Rental order (one customer, one branch, many items)."""

    __tablename__ = 'orders'

    id = Column(IdType, primary_key=True, autoincrement=True)
    invoice_number = Column(String(40), nullable=False, unique=True)  # GLAORD-YYYYMMDD-NNNN
    branch_id = Column(BigInteger, ForeignKey('branches.id'), nullable=False)
    staff_id = Column(BigInteger, ForeignKey('profiles.id'), nullable=False)
    customer_id = Column(BigInteger, ForeignKey('customers.id', ondelete='RESTRICT'), nullable=False)

    booking_date = Column(DateTime, nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    start_datetime = Column(DateTime, nullable=True)
    end_datetime = Column(DateTime, nullable=True)

    status = Column(String(30), nullable=False, default=OrderStatus.ACTIVE.value)

    subtotal = Column(Numeric(10, 2), nullable=False, default=Decimal('0'))
    gst_amount = Column(Numeric(10, 2), nullable=False, default=Decimal('0'))
    late_fee = Column(Numeric(10, 2), nullable=False, default=Decimal('0'))
    damage_fee_total = Column(Numeric(10, 2), nullable=False, default=Decimal('0'))
    total_amount = Column(Numeric(10, 2), nullable=False, default=Decimal('0'))
    late_returned = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    # Relationships
    branch = relationship('Branch', back_populates='orders')
    staff = relationship('Profile', back_populates='orders')
    customer = relationship('Customer', back_populates='orders')
    items = relationship(
        'OrderItem',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderItem.id'
    )
    audit_entries = relationship(
        'OrderReturnAudit',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderReturnAudit.created_at'
    )

    @property
    def effective_end(self) -> datetime:
        """End of the rental period; date-only orders run until the end of end_date."""
        if self.end_datetime is not None:
            return self.end_datetime
        return datetime.combine(self.end_date, time.max)

    @property
    def effective_start(self) -> datetime:
        if self.start_datetime is not None:
            return self.start_datetime
        return datetime.combine(self.start_date, time.min)

    def to_dict(self, include_items: bool = True):
        data = {
            'id': self.id,
            'invoice_number': self.invoice_number,
            'branch_id': self.branch_id,
            'branch_name': self.branch.name if self.branch else None,
            'staff_id': self.staff_id,
            'staff_name': self.staff.full_name if self.staff else None,
            'customer_id': self.customer_id,
            'customer': {
                'id': self.customer.id,
                'name': self.customer.name,
                'phone': self.customer.phone,
                'customer_number': self.customer.customer_number,
            } if self.customer else None,
            'booking_date': iso_or_none(self.booking_date),
            'start_date': iso_or_none(self.start_date),
            'end_date': iso_or_none(self.end_date),
            'start_datetime': iso_or_none(self.start_datetime),
            'end_datetime': iso_or_none(self.end_datetime),
            'status': self.status,
            'subtotal': money_str(self.subtotal),
            'gst_amount': money_str(self.gst_amount),
            'late_fee': money_str(self.late_fee),
            'damage_fee_total': money_str(self.damage_fee_total),
            'total_amount': money_str(self.total_amount),
            'late_returned': bool(self.late_returned),
            'created_at': iso_or_none(self.created_at),
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data

    def __repr__(self):
        return f"<Order(id={self.id}, invoice='{self.invoice_number}', status='{self.status}')>"
