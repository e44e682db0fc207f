"""Notification repository - the sink that records workflow notification events"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Notification
from .events import NotificationEvent


class NotificationRepository:
    """Repository for notification database operations"""

    @staticmethod
    def record(db: Session, event: NotificationEvent) -> Notification:
        """Stage a notification in the caller's transaction (no commit)"""
        notification = Notification(
            user_id=event.target_user_id,
            type=event.type.value,
            title=event.title,
            message=event.message,
            data=event.data,
            is_read=False,
            created_at=event.created_at,
        )
        db.add(notification)
        return notification

    @staticmethod
    def list_for_user(
        db: Session, user_id: int, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        query = db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()

    @staticmethod
    def get_for_user(db: Session, notification_id: int, user_id: int) -> Optional[Notification]:
        return (
            db.query(Notification)
            .filter(Notification.id == notification_id, Notification.user_id == user_id)
            .first()
        )

    @staticmethod
    def mark_read(db: Session, notification: Notification) -> Notification:
        notification.is_read = True
        db.commit()
        db.refresh(notification)
        return notification
