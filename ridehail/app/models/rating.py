"""
Rating database model.

Ratings are immutable once written; one per trip per author.
"""

import uuid

from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, Text, UniqueConstraint, CheckConstraint
from sqlalchemy.sql import func
from ridehail.app.db.session import Base


class Rating(Base):
    __tablename__ = "ratings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    trip_id = Column(String(36), ForeignKey('trips.id'), nullable=False, index=True)
    from_user_id = Column(String(128), ForeignKey('users.id'), nullable=False)
    to_user_id = Column(String(128), ForeignKey('users.id'), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('trip_id', 'from_user_id', name='uq_ratings_trip_author'),
        CheckConstraint('rating BETWEEN 1 AND 5', name='ck_ratings_range'),
    )

    def __repr__(self):
        return f"<Rating(trip='{self.trip_id}', from='{self.from_user_id}', rating={self.rating})>"
