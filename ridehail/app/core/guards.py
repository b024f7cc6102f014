"""
Security guards for role-based and trip-party access control.
"""

from typing import List

from fastapi import Depends, HTTPException, status

from ridehail.app.core.dependencies import get_current_user
from ridehail.app.core.exceptions import InsufficientPermissionsError
from ridehail.app.models.enums import UserType


def require_role(allowed_roles: List[UserType]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/drivers/available-rides")
        async def available(current_user: dict = Depends(require_role([UserType.DRIVER]))):
            ...

    Args:
        allowed_roles: List of UserType enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function that validates user role

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        try:
            user_role = UserType(current_user.get("role"))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


require_admin = require_role([UserType.ADMIN])
require_driver = require_role([UserType.DRIVER])


class TripPartyGuard:
    """
    Checks that the caller is the rider or driver of a trip.

    Admins may act on any trip.
    """

    def is_party(self, trip, current_user: dict) -> bool:
        if current_user.get("role") == UserType.ADMIN.value:
            return True
        return current_user.get("user_id") in (trip.rider_id, trip.driver_id)

    def enforce(self, trip, current_user: dict) -> None:
        if not self.is_party(trip, current_user):
            raise InsufficientPermissionsError("You are not a party to this trip", details={"trip_id": trip.id})

    def enforce_driver(self, trip, current_user: dict) -> None:
        if current_user.get("role") == UserType.ADMIN.value:
            return
        if trip.driver_id is None or trip.driver_id != current_user.get("user_id"):
            raise InsufficientPermissionsError("This trip is not assigned to you", details={"trip_id": trip.id})


trip_party_guard = TripPartyGuard()
