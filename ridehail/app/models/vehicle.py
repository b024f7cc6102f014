"""
Vehicle database model.

A vehicle is registered by a driver and referenced by trips from the
moment they are matched.
"""

import uuid

from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from ridehail.app.db.session import Base
from ridehail.app.models.enums import VehicleType, enum_values


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    driver_id = Column(String(128), ForeignKey('users.id'), nullable=False, index=True)

    make = Column(String(50), nullable=False)
    model = Column(String(50), nullable=False)
    year = Column(Integer, nullable=False)
    color = Column(String(30), nullable=False)
    license_plate = Column(String(20), unique=True, nullable=False)
    vehicle_type = Column(
        Enum(VehicleType, values_callable=enum_values, name="vehicle_type"),
        default=VehicleType.ECONOMY,
        nullable=False,
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Vehicle(id='{self.id}', plate='{self.license_plate}', driver='{self.driver_id}')>"
