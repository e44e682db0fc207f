"""Reputation schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RatingBonusRequest(BaseModel):
    points: float = Field(gt=0)
    reason: str = Field(min_length=1, max_length=255)


class ReputationResponse(BaseModel):
    providerId: int
    rating: float
    responseTimeoutCount: int
    lastResponseAt: Optional[datetime] = None


class ReputationStatsResponse(BaseModel):
    providerId: int
    currentRating: float
    totalBookings: int
    completedBookings: int
    cancelledBookings: int
    autoRejectedBookings: int
    responseTimeoutCount: int
    completionRate: float
    responseRate: float
    lastResponseAt: Optional[datetime] = None
