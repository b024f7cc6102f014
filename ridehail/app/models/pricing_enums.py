"""
Pricing-related enumerations.
"""

import enum


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class PricingRuleType(str, enum.Enum):
    """Category of a dynamic pricing rule (informational, shown in breakdowns)."""
    SURGE = "surge"
    DISCOUNT = "discount"
    PROMOTION = "promotion"
    TIME_BASED = "time_based"
    DISTANCE_BASED = "distance_based"


class AdjustmentType(str, enum.Enum):
    """How a pricing rule's value is applied to the running total."""
    PERCENTAGE = "percentage"  # +/- value% of the running total
    FIXED_AMOUNT = "fixed_amount"  # +/- value
    MULTIPLIER = "multiplier"  # running total * value
