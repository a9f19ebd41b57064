"""
User model with secure password storage, role and cached loyalty balance.

`loyalty_points` is a cache of the ledger sum; it is only ever changed in the
same transaction that appends a loyalty_transactions row.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, Integer, String
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin


class UserRole:
    CUSTOMER = "customer"
    ADMIN = "admin"
    DRIVER = "driver"

    ALL = (CUSTOMER, ADMIN, DRIVER)


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    phone = Column(String(20), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.CUSTOMER)
    is_active = Column(Boolean, default=True, nullable=False)
    loyalty_points = Column(Integer, nullable=False, default=0)

    bookings = relationship("Booking", back_populates="user", lazy="noload")

    __table_args__ = (
        CheckConstraint("loyalty_points >= 0", name="check_loyalty_points_non_negative"),
        CheckConstraint("role IN ('customer', 'admin', 'driver')", name="check_user_role"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
