"""Booking router - FastAPI endpoints for the reservation workflow"""

import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_operator, get_current_user
from ...config import BOOKING_RATE_LIMIT, BOOKING_RATE_WINDOW_SECONDS
from ...database import SessionLocal, get_db
from ...models import Booking, User
from ...rate_limiter import create_user_rate_limiter
from ...services.deadline_watchdog import DeadlineWatchdog
from ...shared.clock import Clock, get_clock
from .schemas import (
    BookingCancelRequest,
    BookingCreate,
    BookingListResponse,
    BookingRejectRequest,
    BookingResponse,
    Pagination,
    WatchdogRunResponse,
)
from .service import BookingWorkflowService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])

booking_rate_limit = create_user_rate_limiter(
    BOOKING_RATE_LIMIT, BOOKING_RATE_WINDOW_SECONDS, "booking_create"
)


def get_booking_service(
    db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
) -> BookingWorkflowService:
    """Dependency injection for BookingWorkflowService"""
    return BookingWorkflowService(db, clock=clock)


def get_deadline_watchdog(clock: Clock = Depends(get_clock)) -> DeadlineWatchdog:
    return DeadlineWatchdog(SessionLocal, clock=clock)


def to_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        requesterId=booking.requester_id,
        providerId=booking.provider_id,
        serviceRef=booking.service_ref,
        scheduledAt=booking.scheduled_at,
        durationMinutes=booking.duration_minutes,
        price=booking.price,
        status=booking.status,
        responseDeadline=booking.response_deadline,
        isAutoRejected=booking.is_auto_rejected,
        alternativeTimeProposed=booking.alternative_time_proposed,
        cancellationReason=booking.cancellation_reason,
        confirmedAt=booking.confirmed_at,
        completedAt=booking.completed_at,
        notes=booking.notes,
        createdAt=booking.created_at,
        updatedAt=booking.updated_at,
    )


@router.post("", response_model=BookingResponse, status_code=201)
async def create_booking(
    data: BookingCreate,
    current_user: User = Depends(get_current_user),
    service: BookingWorkflowService = Depends(get_booking_service),
    _: None = Depends(booking_rate_limit),
):
    """Submit a booking request; the provider must answer within the response window"""
    booking = service.create_booking(
        requester_id=current_user.id,
        provider_id=data.providerId,
        service_ref=data.serviceRef,
        scheduled_at=data.scheduledAt,
        duration_minutes=data.durationMinutes,
        notes=data.notes,
    )
    return to_response(booking)


@router.get("/me", response_model=BookingListResponse)
async def list_my_bookings(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: BookingWorkflowService = Depends(get_booking_service),
):
    """Bookings of the current user (as requester or provider), latest appointment first"""
    bookings, total = service.list_bookings(current_user, status, page, limit)
    return BookingListResponse(
        bookings=[to_response(b) for b in bookings],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.post("/watchdog/run", response_model=WatchdogRunResponse)
async def run_deadline_watchdog(
    current_user: User = Depends(get_current_operator),
    watchdog: DeadlineWatchdog = Depends(get_deadline_watchdog),
):
    """
    Manually trigger one deadline scan
    (In production the scheduler runs it every interval)
    """
    logger.info(f"Manual deadline scan requested by operator {current_user.id}")
    summary = watchdog.scan_and_expire()
    return WatchdogRunResponse(**summary.as_dict())


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    current_user: User = Depends(get_current_user),
    service: BookingWorkflowService = Depends(get_booking_service),
):
    return to_response(service.get_booking(booking_id, current_user))


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: str,
    current_user: User = Depends(get_current_user),
    service: BookingWorkflowService = Depends(get_booking_service),
):
    return to_response(service.confirm_booking(booking_id, current_user.id))


@router.post("/{booking_id}/reject", response_model=BookingResponse)
async def reject_or_reschedule_booking(
    booking_id: str,
    data: Optional[BookingRejectRequest] = None,
    current_user: User = Depends(get_current_user),
    service: BookingWorkflowService = Depends(get_booking_service),
):
    """Reject, or propose another time when alternativeTime is given"""
    data = data or BookingRejectRequest()
    booking = service.reject_or_reschedule(
        booking_id, current_user.id, alternative_time=data.alternativeTime, reason=data.reason
    )
    return to_response(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    data: Optional[BookingCancelRequest] = None,
    current_user: User = Depends(get_current_user),
    service: BookingWorkflowService = Depends(get_booking_service),
):
    data = data or BookingCancelRequest()
    return to_response(service.cancel_booking(booking_id, current_user.id, reason=data.reason))


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: str,
    current_user: User = Depends(get_current_user),
    service: BookingWorkflowService = Depends(get_booking_service),
):
    return to_response(service.complete_booking(booking_id, current_user.id))
