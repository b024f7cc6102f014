"""
User and vehicle endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.app.core.dependencies import get_current_user
from ridehail.app.core.exceptions import NotFoundError
from ridehail.app.core.guards import require_driver
from ridehail.app.db.session import get_db
from ridehail.app.models.user import User
from ridehail.app.models.vehicle import Vehicle
from ridehail.app.schemas.user import UserResponse, UserProfileUpdate, VehicleCreate, VehicleResponse

router = APIRouter(tags=["Users"])


async def _load_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id, populate_existing=True)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


@router.get("/auth/user", response_model=UserResponse)
async def get_me(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await _load_user(db, current_user["user_id"])


@router.patch("/users/profile", response_model=UserResponse)
async def update_profile(
    payload: UserProfileUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Update name/phone, or switch between rider and driver."""
    user = await _load_user(db, current_user["user_id"])
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(user, field, value)
    await db.commit()
    await db.refresh(user)
    return user


@router.post("/vehicles", response_model=VehicleResponse, status_code=status.HTTP_201_CREATED)
async def register_vehicle(
    payload: VehicleCreate,
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """Register a vehicle to the calling driver (Driver only)."""
    vehicle = Vehicle(driver_id=current_user["user_id"], **payload.model_dump())
    db.add(vehicle)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Vehicle with plate {payload.license_plate} already registered"
        )
    await db.refresh(vehicle)
    return vehicle


@router.get("/vehicles", response_model=List[VehicleResponse])
async def list_my_vehicles(
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(Vehicle)
        .where(Vehicle.driver_id == current_user["user_id"])
        .order_by(Vehicle.created_at)
    )
    return list(result.scalars().all())
