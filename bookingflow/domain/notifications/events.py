"""
Notification event shaping

The workflow only produces events; the sink (NotificationRepository) records them.
Each builder documents the fixed shape of its ``data`` blob so consumers can
deserialize it safely. Timestamps inside ``data`` are ISO-8601 strings.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ...models import Booking, NotificationType, User


@dataclass
class NotificationEvent:
    target_user_id: int
    type: NotificationType
    title: str
    message: str
    created_at: datetime
    data: dict[str, Any] = field(default_factory=dict)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def booking_requested(booking: Booking, requester: User, now: datetime) -> NotificationEvent:
    """
    To the provider when a requester submits a booking.

    data: {bookingId, serviceRef, requesterName, scheduledAt}
    """
    return NotificationEvent(
        target_user_id=booking.provider_id,
        type=NotificationType.BOOKING_REQUEST,
        title="New booking request",
        message=f"{requester.display_name} wants to book {booking.service_ref}",
        created_at=now,
        data={
            "bookingId": booking.id,
            "serviceRef": booking.service_ref,
            "requesterName": requester.display_name,
            "scheduledAt": _iso(booking.scheduled_at),
        },
    )


def booking_confirmed(booking: Booking, provider: User, now: datetime) -> NotificationEvent:
    """
    To the requester when the provider confirms.

    data: {bookingId, providerName, scheduledAt, confirmedAt}
    """
    return NotificationEvent(
        target_user_id=booking.requester_id,
        type=NotificationType.BOOKING_CONFIRMED,
        title="Booking confirmed",
        message=f"{provider.display_name} confirmed your booking for {booking.scheduled_at:%Y-%m-%d %H:%M} UTC",
        created_at=now,
        data={
            "bookingId": booking.id,
            "providerName": provider.display_name,
            "scheduledAt": _iso(booking.scheduled_at),
            "confirmedAt": _iso(booking.confirmed_at),
        },
    )


def booking_rejected(
    booking: Booking, provider: User, reason: Optional[str], now: datetime
) -> NotificationEvent:
    """
    To the requester when the provider declines.

    data: {bookingId, providerName, reason, autoRejected}
    """
    message = f"{provider.display_name} declined your booking"
    if reason:
        message += f": {reason}"
    return NotificationEvent(
        target_user_id=booking.requester_id,
        type=NotificationType.BOOKING_REJECTED,
        title="Booking declined",
        message=message,
        created_at=now,
        data={
            "bookingId": booking.id,
            "providerName": provider.display_name,
            "reason": reason,
            "autoRejected": False,
        },
    )


def booking_rescheduled(
    booking: Booking,
    provider: User,
    alternative_time: datetime,
    reason: Optional[str],
    now: datetime,
) -> NotificationEvent:
    """
    To the requester when the provider proposes another time.

    data: {bookingId, providerName, alternativeTime, reason}
    """
    return NotificationEvent(
        target_user_id=booking.requester_id,
        type=NotificationType.BOOKING_RESCHEDULED,
        title="Another time proposed",
        message=f"{provider.display_name} proposed another time: {alternative_time:%Y-%m-%d %H:%M} UTC",
        created_at=now,
        data={
            "bookingId": booking.id,
            "providerName": provider.display_name,
            "alternativeTime": _iso(alternative_time),
            "reason": reason,
        },
    )


def booking_cancelled(
    booking: Booking,
    canceller: User,
    target_user_id: int,
    reason: Optional[str],
    now: datetime,
) -> NotificationEvent:
    """
    To the other party when a booking is cancelled.

    data: {bookingId, cancellerName, cancelledBy, reason}
    """
    message = f"{canceller.display_name} cancelled the booking for {booking.service_ref}"
    if reason:
        message += f": {reason}"
    return NotificationEvent(
        target_user_id=target_user_id,
        type=NotificationType.BOOKING_CANCELLED,
        title="Booking cancelled",
        message=message,
        created_at=now,
        data={
            "bookingId": booking.id,
            "cancellerName": canceller.display_name,
            "cancelledBy": canceller.id,
            "reason": reason,
        },
    )


def provider_did_not_respond(
    booking: Booking,
    provider: User,
    window_minutes: int,
    old_rating: float,
    new_rating: float,
    now: datetime,
) -> NotificationEvent:
    """
    To the requester when the watchdog auto-rejects.

    data: {bookingId, providerName, reason, autoRejected, oldRating, newRating}
    """
    return NotificationEvent(
        target_user_id=booking.requester_id,
        type=NotificationType.BOOKING_REJECTED,
        title="Provider did not respond",
        message=(
            f"{provider.display_name} did not respond within {window_minutes} minutes. "
            "Please choose another provider."
        ),
        created_at=now,
        data={
            "bookingId": booking.id,
            "providerName": provider.display_name,
            "reason": booking.cancellation_reason,
            "autoRejected": True,
            "oldRating": old_rating,
            "newRating": new_rating,
        },
    )


def reputation_changed(
    provider_id: int,
    old_rating: float,
    new_rating: float,
    points: float,
    reason: str,
    now: datetime,
    booking_id: Optional[str] = None,
) -> NotificationEvent:
    """
    To the provider whenever the rating moves. ``points`` is signed.

    data: {oldRating, newRating, points, reason, bookingId}
    """
    if points < 0:
        title = "Rating decreased"
        message = f"Your rating dropped by {abs(points):g} points for {reason}. Current rating: {new_rating:g}"
    else:
        title = "Rating increased"
        message = f"Your rating rose by {points:g} points for {reason}. Current rating: {new_rating:g}"
    return NotificationEvent(
        target_user_id=provider_id,
        type=NotificationType.REPUTATION_CHANGED,
        title=title,
        message=message,
        created_at=now,
        data={
            "oldRating": old_rating,
            "newRating": new_rating,
            "points": points,
            "reason": reason,
            "bookingId": booking_id,
        },
    )
