"""
User and vehicle enumerations.
"""

import enum


class UserType(str, enum.Enum):
    """
    User type enumeration.

    Types:
        RIDER: Requests trips (default)
        DRIVER: Accepts and drives trips
        ADMIN: Manages pricing plans, rules and promo codes
    """
    RIDER = "rider"
    DRIVER = "driver"
    ADMIN = "admin"


class VehicleType(str, enum.Enum):
    ECONOMY = "economy"
    COMFORT = "comfort"
    PREMIUM = "premium"
    LUXURY = "luxury"


def enum_values(enum_cls):
    """Persist enum values (lowercase) rather than member names."""
    return [member.value for member in enum_cls]
