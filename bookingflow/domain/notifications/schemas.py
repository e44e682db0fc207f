"""Notification schemas"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: int
    targetUserId: int
    type: str
    title: str
    message: str
    data: Optional[dict[str, Any]] = None
    isRead: bool
    createdAt: datetime
