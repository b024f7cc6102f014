"""
Trip-related enumerations.
"""

import enum


class TripStatus(str, enum.Enum):
    """Trip status enumeration."""
    REQUESTED = "requested"  # Rider asked for a ride, waiting for a driver
    MATCHED = "matched"  # Driver accepted, heading to pickup
    PICKUP = "pickup"  # Driver at pickup, waiting for rider
    IN_PROGRESS = "in_progress"  # Rider on board
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CancelReason(str, enum.Enum):
    USER_REQUESTED = "user_requested"
    DRIVER_OFFLINE = "driver_offline"
    TIMEOUT = "timeout"


ACTIVE_STATUSES = (
    TripStatus.REQUESTED,
    TripStatus.MATCHED,
    TripStatus.PICKUP,
    TripStatus.IN_PROGRESS,
)

TERMINAL_STATUSES = (TripStatus.COMPLETED, TripStatus.CANCELLED)

CANCELLABLE_STATUSES = (TripStatus.REQUESTED, TripStatus.MATCHED, TripStatus.PICKUP)

# Status a trip must currently hold to move into the key status
PREVIOUS_STATUS = {
    TripStatus.MATCHED: TripStatus.REQUESTED,
    TripStatus.PICKUP: TripStatus.MATCHED,
    TripStatus.IN_PROGRESS: TripStatus.PICKUP,
    TripStatus.COMPLETED: TripStatus.IN_PROGRESS,
}
