"""Pydantic schemas for the notification inbox API."""
from datetime import datetime

from pydantic import BaseModel

from src.mk_notification.domain.models import Notification


class NotificationResponse(BaseModel):
    id: int
    order_id: str | None
    type: str
    title: str
    message: str
    read: bool
    created_at: datetime | None = None

    @classmethod
    def from_domain(cls, n: Notification) -> "NotificationResponse":
        return cls(
            id=n.id or 0,
            order_id=n.order_id,
            type=n.type,
            title=n.title,
            message=n.message,
            read=n.read,
            created_at=n.created_at,
        )


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    next_cursor: str | None
    has_more: bool


class CleanupResult(BaseModel):
    welcome_removed: int
    duplicates_removed: int
    expired_removed: int
