"""Profile model - staff accounts with role, branch and GST settings."""
import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from werkzeug.security import generate_password_hash, check_password_hash
from rentals.database import Base, IdType
from rentals.utils.formatters import iso_or_none, money_str


class UserRole(str, enum.Enum):
    """Staff roles."""
    SUPER_ADMIN = 'super_admin'
    BRANCH_ADMIN = 'branch_admin'
    STAFF = 'staff'


class Profile(Base):
    """Profile model - a staff member who can log in and take orders."""

    __tablename__ = 'profiles'

    id = Column(IdType, primary_key=True, autoincrement=True)
    username = Column(String(100), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=True)
    full_name = Column(String(200), nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.STAFF.value)  # super_admin, branch_admin, staff
    branch_id = Column(BigInteger, ForeignKey('branches.id', ondelete='SET NULL'), nullable=True)
    # NULL is treated as active
    is_active = Column(Boolean, nullable=True, default=True)

    # GST settings used when this staff member bills an order
    gst_number = Column(String(20), nullable=True)
    gst_enabled = Column(Boolean, nullable=False, default=False)
    gst_rate = Column(Numeric(5, 2), nullable=False, default=Decimal('5.00'))
    gst_included = Column(Boolean, nullable=False, default=False)
    upi_id = Column(String(100), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    # Relationships
    branch = relationship('Branch', back_populates='staff')
    orders = relationship('Order', back_populates='staff')

    def set_password(self, password):
        """Set password hash."""
        self.password_hash = generate_password_hash(password, method='scrypt')

    def check_password(self, password):
        """Check password against hash."""
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def can_login(self) -> bool:
        return self.is_active is not False

    def is_super_admin(self):
        return self.role == UserRole.SUPER_ADMIN.value

    def is_admin(self):
        """Check if user is branch admin or super admin."""
        return self.role in [UserRole.SUPER_ADMIN.value, UserRole.BRANCH_ADMIN.value]

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'full_name': self.full_name,
            'phone': self.phone,
            'role': self.role,
            'branch_id': self.branch_id,
            'branch_name': self.branch.name if self.branch else None,
            'is_active': self.can_login,
            'gst_number': self.gst_number,
            'gst_enabled': bool(self.gst_enabled),
            'gst_rate': money_str(self.gst_rate),
            'gst_included': bool(self.gst_included),
            'upi_id': self.upi_id,
            'created_at': iso_or_none(self.created_at),
        }

    def __repr__(self):
        return f"<Profile(id={self.id}, username='{self.username}', role='{self.role}')>"
