"""Notification inbox endpoints"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...errors import NotFoundFailure
from ...models import Notification, User
from .repository import NotificationRepository
from .schemas import NotificationResponse

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def to_response(notification: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        targetUserId=notification.user_id,
        type=notification.type,
        title=notification.title,
        message=notification.message,
        data=notification.data,
        isRead=notification.is_read,
        createdAt=notification.created_at,
    )


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    unreadOnly: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Notifications addressed to the current user, newest first"""
    notifications = NotificationRepository.list_for_user(db, current_user.id, unreadOnly, limit)
    return [to_response(n) for n in notifications]


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = NotificationRepository.get_for_user(db, notification_id, current_user.id)
    if not notification:
        raise NotFoundFailure("Notification not found")
    return to_response(NotificationRepository.mark_read(db, notification))
