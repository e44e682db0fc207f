import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique opaque identifier"""
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    REQUESTER = "requester"
    PROVIDER = "provider"
    ADMIN = "admin"


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset(
    {BookingStatus.REJECTED, BookingStatus.CANCELLED, BookingStatus.COMPLETED}
)


class NotificationType(str, enum.Enum):
    BOOKING_REQUEST = "booking_request"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_REJECTED = "booking_rejected"
    BOOKING_RESCHEDULED = "booking_rescheduled"
    BOOKING_CANCELLED = "booking_cancelled"
    REPUTATION_CHANGED = "reputation_changed"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.REQUESTER.value)  # requester, provider, admin
    created_at = Column(DateTime, server_default=func.now())

    provider_profile = relationship(
        "ProviderProfile", back_populates="user", uselist=False, lazy="selectin"
    )

    @property
    def display_name(self) -> str:
        return self.full_name or self.email


class ProviderProfile(Base):
    """Reputation record, one per provider user"""

    __tablename__ = "provider_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True, nullable=False
    )
    rating = Column(Float, nullable=False, default=50.0)  # clamped to [RATING_MIN, RATING_MAX]
    response_timeout_count = Column(Integer, nullable=False, default=0)
    last_response_at = Column(DateTime, nullable=True)  # observability only
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="provider_profile")


class ProviderOffering(Base):
    """Catalog items a provider is willing to deliver"""

    __tablename__ = "provider_offerings"
    __table_args__ = (UniqueConstraint("provider_id", "service_ref", name="uq_offering_provider_service"),)

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    service_ref = Column(String(255), index=True, nullable=False)
    price = Column(Numeric(10, 2), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    is_available = Column(Boolean, nullable=False, default=True)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    requester_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    provider_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    service_ref = Column(String(255), nullable=False)

    scheduled_at = Column(DateTime, index=True, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(String(20), index=True, nullable=False, default=BookingStatus.PENDING.value)
    response_deadline = Column(DateTime, index=True, nullable=True)  # set once at creation
    is_auto_rejected = Column(Boolean, nullable=False, default=False)
    alternative_time_proposed = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=True)

    requester = relationship("User", foreign_keys=[requester_id], lazy="selectin")
    provider = relationship("User", foreign_keys=[provider_id], lazy="selectin")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)  # shape documented per type in domain/notifications/events.py
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False)
