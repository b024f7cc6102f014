"""
Default pricing catalog seeded at startup.
"""

from datetime import timedelta
from decimal import Decimal

from ridehail.app.core.timeutils import utcnow
from ridehail.app.models.enums import VehicleType
from ridehail.app.models.pricing_enums import DiscountType

DEFAULT_PLANS = [
    {
        "name": "economy",
        "display_name": "Economy",
        "description": "Affordable rides for everyday travel",
        "vehicle_type": VehicleType.ECONOMY,
        "base_fare": Decimal("2.50"),
        "per_km_rate": Decimal("2.01"),
        "per_minute_rate": Decimal("0.25"),
        "minimum_fare": Decimal("5.00"),
        "cancellation_fee": Decimal("3.00"),
        "booking_fee": Decimal("1.00"),
        "surge_multiplier": Decimal("1.00"),
        "features": ["Standard vehicle", "Up to 4 passengers", "Basic comfort"],
        "max_passengers": 4,
    },
    {
        "name": "comfort",
        "display_name": "Comfort",
        "description": "Newer cars with extra legroom",
        "vehicle_type": VehicleType.COMFORT,
        "base_fare": Decimal("3.50"),
        "per_km_rate": Decimal("2.82"),
        "per_minute_rate": Decimal("0.35"),
        "minimum_fare": Decimal("7.00"),
        "cancellation_fee": Decimal("4.00"),
        "booking_fee": Decimal("1.50"),
        "surge_multiplier": Decimal("1.20"),
        "features": ["Newer vehicle", "Extra legroom", "Top-rated drivers"],
        "max_passengers": 4,
    },
    {
        "name": "premium",
        "display_name": "Premium",
        "description": "Luxury vehicles with professional drivers",
        "vehicle_type": VehicleType.PREMIUM,
        "base_fare": Decimal("5.00"),
        "per_km_rate": Decimal("4.02"),
        "per_minute_rate": Decimal("0.50"),
        "minimum_fare": Decimal("12.00"),
        "cancellation_fee": Decimal("6.00"),
        "booking_fee": Decimal("2.00"),
        "surge_multiplier": Decimal("1.50"),
        "features": ["Luxury vehicle", "Professional driver", "Complimentary water"],
        "max_passengers": 4,
    },
]


def default_promo_codes():
    """Launch promo codes; validity windows start at seeding time."""
    now = utcnow()
    return [
        {
            "code": "WELCOME10",
            "name": "Welcome Discount",
            "description": "10% off your first ride",
            "discount_type": DiscountType.PERCENTAGE,
            "discount_value": Decimal("10.00"),
            "max_discount": Decimal("15.00"),
            "min_trip_value": Decimal("5.00"),
            "usage_limit": 1000,
            "per_user_limit": 1,
            "valid_from": now,
            "valid_to": now + timedelta(days=365),
        },
        {
            "code": "SAVE5",
            "name": "Save $5",
            "description": "$5 off rides over $20",
            "discount_type": DiscountType.FIXED_AMOUNT,
            "discount_value": Decimal("5.00"),
            "max_discount": None,
            "min_trip_value": Decimal("20.00"),
            "usage_limit": 500,
            "per_user_limit": 2,
            "valid_from": now,
            "valid_to": now + timedelta(days=30),
        },
    ]
