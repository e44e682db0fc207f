"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.clock import to_naive_utc
from .repository import MAX_DURATION_MINUTES


class BookingCreate(BaseModel):
    """Schema for creating a new booking request"""

    providerId: int
    serviceRef: str = Field(min_length=1, max_length=255)
    scheduledAt: datetime
    durationMinutes: Optional[int] = Field(default=None, gt=0, le=MAX_DURATION_MINUTES)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("scheduledAt")
    @classmethod
    def normalize_scheduled_at(cls, v):
        return to_naive_utc(v)


class BookingRejectRequest(BaseModel):
    """Reject outright, or propose another time when alternativeTime is given"""

    alternativeTime: Optional[datetime] = None
    reason: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("alternativeTime")
    @classmethod
    def normalize_alternative_time(cls, v):
        if v is not None:
            return to_naive_utc(v)
        return v


class BookingCancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class BookingResponse(BaseModel):
    """Schema for booking response"""

    id: str
    requesterId: int
    providerId: int
    serviceRef: str
    scheduledAt: datetime
    durationMinutes: int
    price: Optional[Decimal] = None
    status: str
    responseDeadline: Optional[datetime] = None
    isAutoRejected: bool
    alternativeTimeProposed: Optional[datetime] = None
    cancellationReason: Optional[str] = None
    confirmedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    notes: Optional[str] = None
    createdAt: datetime
    updatedAt: Optional[datetime] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    pagination: Pagination


class WatchdogRunResponse(BaseModel):
    scanned: int
    expired: int
    skipped: int
    failed: int
