"""Reputation repository - Reputation Store operations"""

from datetime import datetime
from typing import Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from ...config import DEFAULT_PROVIDER_RATING, RATING_MAX, RATING_MIN
from ...models import Booking, BookingStatus, ProviderProfile


class ReputationRepository:
    """Repository for provider reputation records"""

    @staticmethod
    def get_profile(db: Session, provider_id: int) -> Optional[ProviderProfile]:
        return db.query(ProviderProfile).filter(ProviderProfile.user_id == provider_id).first()

    @staticmethod
    def ensure_profile(db: Session, provider_id: int) -> ProviderProfile:
        """Return the provider's reputation record, staging a fresh one if missing"""
        profile = ReputationRepository.get_profile(db, provider_id)
        if profile is None:
            profile = ProviderProfile(
                user_id=provider_id,
                rating=DEFAULT_PROVIDER_RATING,
                response_timeout_count=0,
            )
            db.add(profile)
            db.flush()
        return profile

    @staticmethod
    def lock_profile(db: Session, provider_id: int) -> None:
        """Row-lock the provider's record until the end of the transaction (no-op on SQLite)"""
        ReputationRepository.ensure_profile(db, provider_id)
        db.execute(
            select(ProviderProfile.id)
            .where(ProviderProfile.user_id == provider_id)
            .with_for_update()
        )

    @staticmethod
    def read_rating_for_update(db: Session, provider_id: int) -> Optional[float]:
        """Current rating, row-locked until the end of the transaction where supported"""
        return db.execute(
            select(ProviderProfile.rating)
            .where(ProviderProfile.user_id == provider_id)
            .with_for_update()
        ).scalar_one_or_none()

    @staticmethod
    def apply_rating_delta(
        db: Session,
        provider_id: int,
        delta: float,
        count_timeout: bool = False,
        lower: float = RATING_MIN,
        upper: float = RATING_MAX,
    ) -> Optional[float]:
        """
        Add ``delta`` to the rating inside the database, clamped to [lower, upper].
        The arithmetic happens in one UPDATE so concurrent adjustments never
        overwrite each other. Returns the new rating, or None if no record exists.
        """
        raw = ProviderProfile.rating + delta
        clamped = case((raw < lower, lower), (raw > upper, upper), else_=raw)
        values = {"rating": clamped}
        if count_timeout:
            values["response_timeout_count"] = ProviderProfile.response_timeout_count + 1

        result = db.execute(
            update(ProviderProfile)
            .where(ProviderProfile.user_id == provider_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        return db.execute(
            select(ProviderProfile.rating).where(ProviderProfile.user_id == provider_id)
        ).scalar_one()

    @staticmethod
    def touch_last_response(db: Session, provider_id: int, when: datetime) -> None:
        db.execute(
            update(ProviderProfile)
            .where(ProviderProfile.user_id == provider_id)
            .values(last_response_at=when)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def booking_counts(db: Session, provider_id: int) -> dict:
        """Total/completed/cancelled/auto-rejected booking counts for a provider"""
        row = db.execute(
            select(
                func.count(Booking.id),
                func.sum(case((Booking.status == BookingStatus.COMPLETED.value, 1), else_=0)),
                func.sum(case((Booking.status == BookingStatus.CANCELLED.value, 1), else_=0)),
                func.sum(case((Booking.is_auto_rejected.is_(True), 1), else_=0)),
            ).where(Booking.provider_id == provider_id)
        ).one()

        return {
            "total": row[0] or 0,
            "completed": row[1] or 0,
            "cancelled": row[2] or 0,
            "auto_rejected": row[3] or 0,
        }
