"""Branch model."""
from datetime import datetime
from sqlalchemy import Column, String, Text, Boolean, DateTime
from sqlalchemy.orm import relationship
from rentals.database import Base, IdType
from rentals.utils.formatters import iso_or_none


class Branch(Base):
    """Branch (rental outlet)."""

    __tablename__ = 'branches'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    address = Column(Text, nullable=False)
    phone = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    # Relationships
    staff = relationship('Profile', back_populates='branch')
    orders = relationship('Order', back_populates='branch')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'address': self.address,
            'phone': self.phone,
            'is_active': self.is_active,
            'created_at': iso_or_none(self.created_at),
        }

    def __repr__(self):
        return f"<Branch(id={self.id}, name='{self.name}')>"
