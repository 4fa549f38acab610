"""Customer model."""
import enum
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Boolean
from sqlalchemy.orm import relationship
from rentals.database import Base, IdType
from rentals.utils.formatters import iso_or_none


class IdProofType(str, enum.Enum):
    """Accepted identity documents."""
    AADHAR = 'aadhar'
    PASSPORT = 'passport'
    VOTER = 'voter'
    OTHERS = 'others'


class Customer(Base):
    """Customer who rents equipment."""

    __tablename__ = 'customers'

    id = Column(IdType, primary_key=True, autoincrement=True)
    customer_number = Column(String(20), nullable=True, unique=True)  # GLA-00001
    name = Column(String(200), nullable=False)
    phone = Column(String(10), nullable=False, unique=True)
    email = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    id_proof_type = Column(String(20), nullable=True)
    id_proof_number = Column(String(50), nullable=True)
    id_proof_front_url = Column(Text, nullable=True)
    id_proof_back_url = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    # Relationships
    orders = relationship('Order', back_populates='customer')

    def to_dict(self):
        return {
            'id': self.id,
            'customer_number': self.customer_number,
            'name': self.name,
            'phone': self.phone,
            'email': self.email,
            'address': self.address,
            'id_proof_type': self.id_proof_type,
            'id_proof_number': self.id_proof_number,
            'id_proof_front_url': self.id_proof_front_url,
            'id_proof_back_url': self.id_proof_back_url,
            'is_active': self.is_active,
            'created_at': iso_or_none(self.created_at),
        }

    def __repr__(self):
        return f"<Customer(id={self.id}, number='{self.customer_number}', name='{self.name}')>"
