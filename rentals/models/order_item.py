"""OrderItem model."""
import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, BigInteger, Integer, String, Text, Numeric, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from rentals.database import Base, IdType
from rentals.utils.formatters import iso_or_none, money_str


class ReturnStatus(str, enum.Enum):
    """Per-item return state."""
    NOT_YET_RETURNED = 'not_yet_returned'
    RETURNED = 'returned'
    MISSING = 'missing'

    @classmethod
    def values(cls):
        return [status.value for status in cls]


class OrderItem(Base):
    """A rented product line on an order."""

    __tablename__ = 'order_items'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    photo_url = Column(Text, nullable=False)
    product_name = Column(String(200), nullable=True)
    quantity = Column(Integer, nullable=False)
    price_per_day = Column(Numeric(10, 2), nullable=False)
    days = Column(Integer, nullable=False, default=1)
    # quantity x price_per_day; the days multiplier is not stored
    line_total = Column(Numeric(10, 2), nullable=False)

    # Return tracking
    return_status = Column(String(20), nullable=False, default=ReturnStatus.NOT_YET_RETURNED.value)
    returned_quantity = Column(Integer, nullable=False, default=0)
    damage_fee = Column(Numeric(10, 2), nullable=False, default=Decimal('0'))
    damage_description = Column(Text, nullable=True)
    actual_return_date = Column(DateTime, nullable=True)
    late_return = Column(Boolean, nullable=False, default=False)
    missing_note = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.now)

    # Relationships
    order = relationship('Order', back_populates='items')

    @property
    def has_damage(self) -> bool:
        return (self.damage_fee or 0) > 0 or bool((self.damage_description or '').strip())

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'photo_url': self.photo_url,
            'product_name': self.product_name,
            'quantity': self.quantity,
            'price_per_day': money_str(self.price_per_day),
            'days': self.days,
            'line_total': money_str(self.line_total),
            'return_status': self.return_status,
            'returned_quantity': self.returned_quantity or 0,
            'damage_fee': money_str(self.damage_fee),
            'damage_description': self.damage_description,
            'actual_return_date': iso_or_none(self.actual_return_date),
            'late_return': bool(self.late_return),
            'missing_note': self.missing_note,
        }

    def __repr__(self):
        return f"<OrderItem(id={self.id}, product='{self.product_name}', qty={self.quantity})>"
