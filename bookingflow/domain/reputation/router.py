"""Provider reputation endpoints"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_operator, get_current_user
from ...database import get_db
from ...models import User
from ...shared.clock import Clock, get_clock
from .schemas import RatingBonusRequest, ReputationResponse, ReputationStatsResponse
from .service import ReputationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/providers", tags=["Reputation"])


def get_reputation_service(
    db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
) -> ReputationService:
    return ReputationService(db, clock=clock)


@router.get("/{provider_id}/reputation", response_model=ReputationStatsResponse)
async def get_reputation_stats(
    provider_id: int,
    current_user: User = Depends(get_current_user),
    service: ReputationService = Depends(get_reputation_service),
):
    """Rating, booking counts and response/completion rates (percentages)"""
    stats = service.get_reputation_stats(provider_id)
    return ReputationStatsResponse(
        providerId=stats["provider_id"],
        currentRating=stats["current_rating"],
        totalBookings=stats["total_bookings"],
        completedBookings=stats["completed_bookings"],
        cancelledBookings=stats["cancelled_bookings"],
        autoRejectedBookings=stats["auto_rejected_bookings"],
        responseTimeoutCount=stats["response_timeout_count"],
        completionRate=stats["completion_rate"],
        responseRate=stats["response_rate"],
        lastResponseAt=stats["last_response_at"],
    )


@router.post("/{provider_id}/reputation/bonus", response_model=ReputationResponse)
async def increase_rating_for_activity(
    provider_id: int,
    data: RatingBonusRequest,
    current_user: User = Depends(get_current_operator),
    service: ReputationService = Depends(get_reputation_service),
):
    """Operator hook for positive reinforcement"""
    logger.info(f"Operator {current_user.id} awarding {data.points:g} points to provider {provider_id}")
    profile = service.increase_rating_for_activity(provider_id, data.points, data.reason)
    return ReputationResponse(
        providerId=profile.user_id,
        rating=profile.rating,
        responseTimeoutCount=profile.response_timeout_count,
        lastResponseAt=profile.last_response_at,
    )
