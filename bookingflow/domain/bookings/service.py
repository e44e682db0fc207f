"""Booking service - the reservation workflow controller

State machine (terminal states: rejected, cancelled, completed):

    pending --confirm--> confirmed --complete--> completed
    pending --reject---> rejected
    pending --reschedule--> pending (alternative_time_proposed set)
    pending|confirmed --cancel--> cancelled
    pending --(deadline elapsed, watchdog)--> rejected (is_auto_rejected)

Each operation loads the booking, validates actor and state, then applies the
change with a compare-and-set UPDATE so a concurrent actor (or the watchdog)
cannot also succeed. Notifications are staged in the same transaction.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...config import (
    BOOKING_RESPONSE_WINDOW_MINUTES,
    DEFAULT_DURATION_MINUTES,
    ENFORCE_SCHEDULE_CONFLICTS,
)
from ...errors import (
    AuthorizationFailure,
    ConflictFailure,
    NotFoundFailure,
    StateConflictFailure,
    ValidationFailure,
)
from ...models import TERMINAL_STATUSES, Booking, BookingStatus, User, UserRole
from ...shared.clock import Clock, to_naive_utc, utcnow
from ..notifications import events
from ..notifications.repository import NotificationRepository
from ..reputation.repository import ReputationRepository
from .repository import MAX_DURATION_MINUTES, BookingRepository

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class BookingWorkflowService:
    """Service layer for booking state transitions"""

    def __init__(
        self,
        db: Session,
        clock: Clock = utcnow,
        response_window_minutes: int = BOOKING_RESPONSE_WINDOW_MINUTES,
        enforce_schedule_conflicts: bool = ENFORCE_SCHEDULE_CONFLICTS,
        repo: Optional[BookingRepository] = None,
        reputation_repo: Optional[ReputationRepository] = None,
    ):
        self.db = db
        self.clock = clock
        self.response_window = timedelta(minutes=response_window_minutes)
        self.enforce_schedule_conflicts = enforce_schedule_conflicts
        self.repo = repo or BookingRepository()
        self.reputation = reputation_repo or ReputationRepository()
        self.notifications = NotificationRepository()

    # ------------------------------------------------------------------
    # Lookups and guards
    # ------------------------------------------------------------------

    def _load(self, booking_id: str) -> Booking:
        if not booking_id:
            raise ValidationFailure("Booking id is required")
        booking = self.repo.get_booking(self.db, booking_id)
        if not booking:
            raise NotFoundFailure("Booking not found")
        return booking

    @staticmethod
    def _require_provider(booking: Booking, acting_provider_id: int, action: str) -> None:
        if booking.provider_id != acting_provider_id:
            logger.warning(
                f"⚠️ User {acting_provider_id} tried to {action} booking {booking.id} owned by provider {booking.provider_id}"
            )
            raise AuthorizationFailure(f"Only the booking's provider can {action} it")

    @staticmethod
    def _require_status(booking: Booking, allowed: set, message: str) -> None:
        if BookingStatus(booking.status) not in allowed:
            raise StateConflictFailure(f"{message} (current status: {booking.status})")

    def _apply(self, booking: Booking, expected: set, **values) -> None:
        """Run the conditional update or fail with a state conflict if someone got there first"""
        applied = self.repo.transition(
            self.db,
            booking.id,
            expected,
            require_not_auto_rejected=BookingStatus.PENDING in expected,
            **values,
        )
        if not applied:
            self.db.rollback()
            logger.warning(f"⚠️ Booking {booking.id} changed concurrently; transition abandoned")
            raise StateConflictFailure("Booking was already answered")
        self.db.refresh(booking)

    def _check_schedule_conflict(
        self, provider_id: int, start: datetime, duration: int, exclude_id: Optional[str] = None
    ) -> None:
        if not self.enforce_schedule_conflicts:
            return
        # Serializes overlapping creates/confirms of one provider until commit
        self.reputation.lock_profile(self.db, provider_id)
        if self.repo.has_confirmed_overlap(self.db, provider_id, start, duration, exclude_id):
            raise ConflictFailure("Provider already has a confirmed booking at that time")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_booking(
        self,
        requester_id: int,
        provider_id: int,
        service_ref: str,
        scheduled_at: datetime,
        duration_minutes: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Booking:
        """Create a pending booking; the provider has one response window to answer"""
        if not requester_id:
            raise ValidationFailure("Requester id is required")
        if not provider_id:
            raise ValidationFailure("Provider id is required")
        if not service_ref or not service_ref.strip():
            raise ValidationFailure("Service reference is required")
        if scheduled_at is None:
            raise ValidationFailure("Scheduled time is required")
        if duration_minutes is not None and not 0 < duration_minutes <= MAX_DURATION_MINUTES:
            raise ValidationFailure(f"Duration must be between 1 and {MAX_DURATION_MINUTES} minutes")

        now = self.clock()
        scheduled_at = to_naive_utc(scheduled_at)
        if scheduled_at <= now:
            raise ValidationFailure("Scheduled time must be in the future")

        requester = self.repo.get_user(self.db, requester_id)
        if not requester:
            raise NotFoundFailure("Requester not found")

        provider = self.repo.get_user(self.db, provider_id)
        if not provider or provider.role != UserRole.PROVIDER.value:
            raise NotFoundFailure("Provider not found")

        if requester.id == provider.id:
            raise ValidationFailure("Providers cannot book themselves")

        if not self.repo.service_exists(self.db, service_ref):
            raise NotFoundFailure("Service not found")

        offering = self.repo.get_offering(self.db, provider_id, service_ref)
        if not offering:
            logger.warning(f"⚠️ Provider {provider_id} cannot deliver {service_ref}")
            raise ConflictFailure("Provider cannot deliver this service")

        duration = duration_minutes or offering.duration_minutes or DEFAULT_DURATION_MINUTES
        self._check_schedule_conflict(provider_id, scheduled_at, duration)

        self.reputation.ensure_profile(self.db, provider_id)
        booking = self.repo.add_booking(
            self.db,
            requester_id=requester.id,
            provider_id=provider.id,
            service_ref=service_ref,
            scheduled_at=scheduled_at,
            duration_minutes=duration,
            price=offering.price,
            notes=notes,
            status=BookingStatus.PENDING.value,
            response_deadline=now + self.response_window,
            is_auto_rejected=False,
            created_at=now,
        )
        self.notifications.record(self.db, events.booking_requested(booking, requester, now))
        self.repo.commit(self.db)
        self.db.refresh(booking)

        logger.info(
            f"📥 Booking {booking.id} created: requester {requester.id} → provider {provider.id}, "
            f"deadline {booking.response_deadline.isoformat()}"
        )
        return booking

    def confirm_booking(self, booking_id: str, acting_provider_id: int) -> Booking:
        booking = self._load(booking_id)
        self._require_provider(booking, acting_provider_id, "confirm")
        self._require_status(booking, {BookingStatus.PENDING}, "Booking has already been answered")
        self._check_schedule_conflict(
            booking.provider_id, booking.scheduled_at, booking.duration_minutes, booking.id
        )

        now = self.clock()
        self._apply(
            booking,
            {BookingStatus.PENDING},
            status=BookingStatus.CONFIRMED.value,
            confirmed_at=now,
            updated_at=now,
        )
        self.reputation.touch_last_response(self.db, booking.provider_id, now)
        self.notifications.record(self.db, events.booking_confirmed(booking, booking.provider, now))
        self.repo.commit(self.db)
        self.db.refresh(booking)

        logger.info(f"✅ Booking {booking.id} transitioned: pending → confirmed")
        return booking

    def reject_or_reschedule(
        self,
        booking_id: str,
        acting_provider_id: int,
        alternative_time: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> Booking:
        """
        Without ``alternative_time`` the booking is rejected. With it, the provider
        proposes a new time and the booking stays pending; there is no modelled
        acceptance step for the requester yet.
        """
        booking = self._load(booking_id)
        self._require_provider(booking, acting_provider_id, "answer")
        self._require_status(booking, {BookingStatus.PENDING}, "Booking has already been answered")

        now = self.clock()
        if alternative_time is not None:
            alternative_time = to_naive_utc(alternative_time)
            if alternative_time <= now:
                raise ValidationFailure("Alternative time must be in the future")

            self._apply(
                booking,
                {BookingStatus.PENDING},
                alternative_time_proposed=alternative_time,
                updated_at=now,
            )
            event = events.booking_rescheduled(booking, booking.provider, alternative_time, reason, now)
            outcome = "alternative time proposed"
        else:
            self._apply(
                booking,
                {BookingStatus.PENDING},
                status=BookingStatus.REJECTED.value,
                cancellation_reason=reason,
                updated_at=now,
            )
            event = events.booking_rejected(booking, booking.provider, reason, now)
            outcome = "pending → rejected"

        self.reputation.touch_last_response(self.db, booking.provider_id, now)
        self.notifications.record(self.db, event)
        self.repo.commit(self.db)
        self.db.refresh(booking)

        logger.info(f"↩️ Booking {booking.id}: {outcome}")
        return booking

    def cancel_booking(
        self, booking_id: str, acting_user_id: int, reason: Optional[str] = None
    ) -> Booking:
        booking = self._load(booking_id)
        actor = self.repo.get_user(self.db, acting_user_id)

        is_requester = actor is not None and actor.id == booking.requester_id
        is_provider = actor is not None and actor.id == booking.provider_id
        is_operator = actor is not None and actor.role == UserRole.ADMIN.value
        if not (is_requester or is_provider or is_operator):
            logger.warning(f"⚠️ User {acting_user_id} not allowed to cancel booking {booking.id}")
            raise AuthorizationFailure("You are not allowed to cancel this booking")

        if booking.status == BookingStatus.COMPLETED.value:
            raise StateConflictFailure("Completed bookings cannot be cancelled")
        if BookingStatus(booking.status) in TERMINAL_STATUSES:
            raise StateConflictFailure(f"Booking is already {booking.status}")

        previous = booking.status
        now = self.clock()
        self._apply(
            booking,
            {BookingStatus.PENDING, BookingStatus.CONFIRMED},
            status=BookingStatus.CANCELLED.value,
            cancellation_reason=reason,
            confirmed_at=None,
            updated_at=now,
        )

        if is_requester:
            targets = [booking.provider_id]
        elif is_provider:
            targets = [booking.requester_id]
        else:
            targets = [booking.requester_id, booking.provider_id]
        for target_user_id in targets:
            self.notifications.record(
                self.db, events.booking_cancelled(booking, actor, target_user_id, reason, now)
            )
        self.repo.commit(self.db)
        self.db.refresh(booking)

        logger.info(f"🚫 Booking {booking.id} transitioned: {previous} → cancelled by user {actor.id}")
        return booking

    def complete_booking(self, booking_id: str, acting_provider_id: int) -> Booking:
        booking = self._load(booking_id)
        self._require_provider(booking, acting_provider_id, "complete")
        self._require_status(
            booking, {BookingStatus.CONFIRMED}, "Only confirmed bookings can be completed"
        )

        now = self.clock()
        self._apply(
            booking,
            {BookingStatus.CONFIRMED},
            status=BookingStatus.COMPLETED.value,
            completed_at=now,
            updated_at=now,
        )
        self.repo.commit(self.db)
        self.db.refresh(booking)

        logger.info(f"🏁 Booking {booking.id} transitioned: confirmed → completed")
        return booking

    def get_booking(self, booking_id: str, actor: User) -> Booking:
        booking = self._load(booking_id)
        if actor.role != UserRole.ADMIN.value and actor.id not in (
            booking.requester_id,
            booking.provider_id,
        ):
            raise AuthorizationFailure("Not your booking")
        return booking

    def list_bookings(
        self, actor: User, status: Optional[str] = None, page: int = 1, limit: int = 20
    ) -> tuple[list[Booking], int]:
        """Bookings visible to the actor; operators see everything"""
        if status is not None and status not in {s.value for s in BookingStatus}:
            raise ValidationFailure(f"Unknown booking status: {status}")
        if page < 1:
            raise ValidationFailure("Page must be 1 or greater")
        if not 0 < limit <= MAX_PAGE_SIZE:
            raise ValidationFailure(f"Limit must be between 1 and {MAX_PAGE_SIZE}")

        if actor.role == UserRole.ADMIN.value:
            return self.repo.list_for_user(self.db, None, False, status, page, limit)
        as_provider = actor.role == UserRole.PROVIDER.value
        return self.repo.list_for_user(self.db, actor.id, as_provider, status, page, limit)
