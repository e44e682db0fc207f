"""Reputation service - penalties, bonuses and derived stats for providers"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...config import DEFAULT_PROVIDER_RATING, RESPONSE_TIMEOUT_PENALTY_POINTS
from ...errors import NotFoundFailure, ValidationFailure
from ...models import Booking, ProviderProfile, UserRole
from ...shared.clock import Clock, utcnow
from ..bookings.repository import BookingRepository
from ..notifications import events
from ..notifications.repository import NotificationRepository
from .repository import ReputationRepository

logger = logging.getLogger(__name__)


class ReputationService:
    """Service layer for provider reputation"""

    def __init__(
        self,
        db: Session,
        clock: Clock = utcnow,
        penalty_points: float = RESPONSE_TIMEOUT_PENALTY_POINTS,
    ):
        self.db = db
        self.clock = clock
        self.penalty_points = penalty_points
        self.repo = ReputationRepository()
        self.notifications = NotificationRepository()

    def _require_provider(self, provider_id: int) -> None:
        user = BookingRepository.get_user(self.db, provider_id)
        if user is None or user.role != UserRole.PROVIDER.value:
            raise NotFoundFailure("Provider not found")

    def apply_timeout_penalty(self, booking: Booking) -> tuple[float, float]:
        """
        Stage the non-response penalty for ``booking`` in the current transaction:
        rating drops by the penalty (floored), timeout counter +1, provider notified.
        Returns (old_rating, new_rating). The caller commits.
        """
        provider_id = booking.provider_id
        self.repo.ensure_profile(self.db, provider_id)
        old_rating = self.repo.read_rating_for_update(self.db, provider_id)
        new_rating = self.repo.apply_rating_delta(
            self.db, provider_id, -self.penalty_points, count_timeout=True
        )

        self.notifications.record(
            self.db,
            events.reputation_changed(
                provider_id=provider_id,
                old_rating=old_rating,
                new_rating=new_rating,
                points=-self.penalty_points,
                reason="not answering a booking request in time",
                now=self.clock(),
                booking_id=booking.id,
            ),
        )
        return old_rating, new_rating

    def increase_rating_for_activity(
        self, provider_id: int, points: float, reason: str
    ) -> ProviderProfile:
        """Add ``points`` to a provider's rating (capped at the ceiling) and notify them"""
        if points is None or points <= 0:
            raise ValidationFailure("Bonus points must be positive")
        if not reason or not reason.strip():
            raise ValidationFailure("A reason is required")

        self._require_provider(provider_id)
        profile = self.repo.ensure_profile(self.db, provider_id)

        old_rating = self.repo.read_rating_for_update(self.db, provider_id)
        new_rating = self.repo.apply_rating_delta(self.db, provider_id, points)

        self.notifications.record(
            self.db,
            events.reputation_changed(
                provider_id=provider_id,
                old_rating=old_rating,
                new_rating=new_rating,
                points=points,
                reason=reason,
                now=self.clock(),
            ),
        )
        BookingRepository.commit(self.db)
        self.db.refresh(profile)

        logger.info(f"⭐ Provider {provider_id} rating raised {old_rating:g} → {new_rating:g} for {reason}")
        return profile

    def get_reputation_stats(self, provider_id: int) -> dict:
        """Read-only aggregate of a provider's reputation and booking history"""
        self._require_provider(provider_id)
        profile: Optional[ProviderProfile] = self.repo.get_profile(self.db, provider_id)

        counts = self.repo.booking_counts(self.db, provider_id)
        total = counts["total"]

        if total > 0:
            completion_rate = counts["completed"] / total * 100
            response_rate = (total - counts["auto_rejected"]) / total * 100
        else:
            completion_rate = 0.0
            response_rate = 100.0

        # A provider without a record yet has the starting reputation
        return {
            "provider_id": provider_id,
            "current_rating": profile.rating if profile else DEFAULT_PROVIDER_RATING,
            "total_bookings": total,
            "completed_bookings": counts["completed"],
            "cancelled_bookings": counts["cancelled"],
            "auto_rejected_bookings": counts["auto_rejected"],
            "response_timeout_count": profile.response_timeout_count if profile else 0,
            "completion_rate": round(completion_rate, 2),
            "response_rate": round(response_rate, 2),
            "last_response_at": profile.last_response_at if profile else None,
        }
