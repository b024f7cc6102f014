"""
Rating schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RatingCreate(BaseModel):
    trip_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)
    to_user_id: Optional[str] = None


class RatingResponse(BaseModel):
    id: str
    trip_id: str
    from_user_id: str
    to_user_id: str
    rating: int
    comment: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True
