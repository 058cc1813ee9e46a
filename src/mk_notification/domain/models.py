"""Notification domain model: pure dataclass."""
from dataclasses import dataclass
from datetime import datetime


@dataclass
class Notification:
    id: int | None
    user_id: str
    type: str
    title: str
    message: str
    order_id: str | None = None
    read: bool = False
    created_at: datetime | None = None
