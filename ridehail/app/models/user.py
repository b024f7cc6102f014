"""
User database model.

Users are created on first authenticated request from the OIDC token
claims; the id is the provider's subject identifier.
"""

from sqlalchemy import Column, String, Boolean, DateTime, Enum, Numeric, Integer
from sqlalchemy.sql import func
from ridehail.app.db.session import Base
from ridehail.app.models.enums import UserType, enum_values


class User(Base):
    """
    User model for riders, drivers and admins.

    Drivers carry an availability flag (``is_driver_active``) that the
    matching flow checks before letting them accept a trip.
    """
    __tablename__ = "users"

    id = Column(String(128), primary_key=True)
    email = Column(String(255), unique=True, index=True, nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(32), nullable=True)
    profile_image_url = Column(String(512), nullable=True)

    user_type = Column(
        Enum(UserType, values_callable=enum_values, name="user_type"),
        default=UserType.RIDER,
        nullable=False,
    )

    # Running average of received ratings
    rating = Column(Numeric(3, 2), nullable=False, default=5.00)
    total_ratings = Column(Integer, nullable=False, default=0)

    # Driver availability
    is_driver_active = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id='{self.id}', email='{self.email}', user_type='{self.user_type.value}')>"
