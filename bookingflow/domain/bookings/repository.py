"""Booking repository - Reservation Store operations

Every state change goes through ``transition``, a conditional UPDATE guarded on
the current status. A rowcount of zero means another actor changed the record
first; the caller must treat that as a lost race, never retry blindly.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from ...errors import TransientStoreFailure
from ...models import Booking, BookingStatus, ProviderOffering, User

logger = logging.getLogger(__name__)

MAX_DURATION_MINUTES = 24 * 60


class BookingRepository:
    """Repository for booking database operations"""

    @staticmethod
    def get_booking(db: Session, booking_id: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def get_user(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_offering(db: Session, provider_id: int, service_ref: str) -> Optional[ProviderOffering]:
        """Offering the provider is currently willing to deliver, if any"""
        return (
            db.query(ProviderOffering)
            .filter(
                ProviderOffering.provider_id == provider_id,
                ProviderOffering.service_ref == service_ref,
                ProviderOffering.is_available.is_(True),
            )
            .first()
        )

    @staticmethod
    def service_exists(db: Session, service_ref: str) -> bool:
        return (
            db.query(ProviderOffering.id).filter(ProviderOffering.service_ref == service_ref).first()
            is not None
        )

    @staticmethod
    def add_booking(db: Session, **booking_data) -> Booking:
        """Stage a new booking in the caller's transaction"""
        booking = Booking(**booking_data)
        db.add(booking)
        db.flush()
        return booking

    @staticmethod
    def transition(
        db: Session,
        booking_id: str,
        expected: Iterable[BookingStatus],
        require_not_auto_rejected: bool = False,
        **values,
    ) -> bool:
        """
        Compare-and-set update: apply ``values`` only if the booking's status is
        one of ``expected``. Returns True when exactly this call changed the row.
        """
        expected_values = [status.value for status in expected]
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status.in_(expected_values))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if require_not_auto_rejected:
            stmt = stmt.where(Booking.is_auto_rejected.is_(False))

        result = db.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    def find_expired_pending(db: Session, now: datetime, limit: int = 100) -> list[Booking]:
        """Pending bookings whose response deadline has passed and that were not auto-rejected yet"""
        return (
            db.query(Booking)
            .filter(
                Booking.status == BookingStatus.PENDING.value,
                Booking.response_deadline < now,
                Booking.is_auto_rejected.is_(False),
            )
            .order_by(Booking.response_deadline.asc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def list_for_user(
        db: Session,
        user_id: Optional[int],
        as_provider: bool,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Booking], int]:
        """Paginated bookings for one party (or every booking when user_id is None), newest appointment first"""
        query = db.query(Booking)
        if user_id is not None:
            if as_provider:
                query = query.filter(Booking.provider_id == user_id)
            else:
                query = query.filter(Booking.requester_id == user_id)

        if status:
            query = query.filter(Booking.status == status)

        total = query.with_entities(func.count(Booking.id)).scalar() or 0
        bookings = (
            query.order_by(Booking.scheduled_at.desc(), Booking.id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return bookings, total

    @staticmethod
    def has_confirmed_overlap(
        db: Session,
        provider_id: int,
        start: datetime,
        duration_minutes: int,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        """True if a confirmed booking of the provider intersects [start, start + duration)"""
        end = start + timedelta(minutes=duration_minutes)
        query = db.query(Booking).filter(
            Booking.provider_id == provider_id,
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.scheduled_at < end,
            Booking.scheduled_at > start - timedelta(minutes=MAX_DURATION_MINUTES),
        )
        if exclude_booking_id:
            query = query.filter(Booking.id != exclude_booking_id)

        for other in query.all():
            other_end = other.scheduled_at + timedelta(minutes=other.duration_minutes)
            if other.scheduled_at < end and other_end > start:
                return True
        return False

    @staticmethod
    def commit(db: Session) -> None:
        """Commit the unit of work, translating store outages into TransientStoreFailure"""
        try:
            db.commit()
        except (OperationalError, InterfaceError) as e:
            db.rollback()
            logger.error(f"❌ Booking store unavailable during commit: {e}")
            raise TransientStoreFailure("Booking store temporarily unavailable") from e
