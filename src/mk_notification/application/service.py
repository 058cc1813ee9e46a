"""Notification fan-out, inbox and housekeeping.

Fan-out writes are a side channel: each notify() call opens its own session
and commits independently, so a failed notification can never roll back the
order or payout mutation that triggered it. Failures are logged and swallowed.
"""
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.mk_common.database import session_scope
from src.mk_common.datetime_utils import utc_now
from src.mk_common.enums import NotificationType
from src.mk_common.errors import NotificationNotFoundError
from src.mk_common.redis_client import get_redis
from src.mk_notification.application.schemas import (
    CleanupResult,
    NotificationListResponse,
    NotificationResponse,
)
from src.mk_notification.domain.templates import render
from src.mk_notification.infrastructure.persistence import NotificationRepository
from src.mk_order.domain.models import Order

logger = logging.getLogger(__name__)

WELCOME_BACK_KEEP = 2

# Settlement outcomes always reach the user; they still count toward the hour.
CAP_EXEMPT = frozenset({
    NotificationType.ORDER_DECLINED,
    NotificationType.ORDER_EXPIRED,
    NotificationType.ORDER_CANCELLED,
    NotificationType.PAYOUT_COMPLETED,
    NotificationType.PAYOUT_FAILED,
    NotificationType.REFUND_PROCESSED,
})

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class NotificationFanout:
    def __init__(
        self,
        repo: NotificationRepository | None = None,
        session_factory: SessionFactory | None = None,
        redis_getter: Callable[[], Any] | None = None,
    ) -> None:
        self._repo = repo or NotificationRepository()
        self._session_factory = session_factory or session_scope
        self._redis_getter = redis_getter or get_redis

    async def notify(
        self,
        user_id: str,
        ntype: NotificationType | str,
        title: str,
        message: str,
        order_id: str | None = None,
        dedup_window: timedelta | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Best-effort insert. Returns True only if a row was written.

        Only written rows count toward the per-user cap; de-duplicated and
        failed writes leave the budget untouched.
        """
        ntype = NotificationType(ntype)
        ntype_value = ntype.value
        now = now or utc_now()
        window = dedup_window or timedelta(minutes=settings.NOTIFICATION_DEDUP_MINUTES)
        try:
            if ntype not in CAP_EXEMPT and await self._cap_reached(user_id, now):
                logger.info("Notification cap reached: user=%s type=%s", user_id, ntype_value)
                return False
            async with self._session_factory() as db:
                try:
                    inserted = await self._repo.insert_deduped(
                        db, user_id, ntype_value, title, message, order_id, now - window
                    )
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
        except Exception:
            logger.warning(
                "Notification write failed: user=%s type=%s order=%s",
                user_id, ntype_value, order_id, exc_info=True,
            )
            return False
        if not inserted:
            logger.info(
                "Notification de-duplicated: user=%s type=%s order=%s",
                user_id, ntype_value, order_id,
            )
            return False
        await self._count_sent(user_id, now)
        return True

    async def notify_order(
        self,
        user_id: str,
        ntype: NotificationType,
        order: Order,
        dedup_window: timedelta | None = None,
        now: datetime | None = None,
        **extra: Any,
    ) -> bool:
        title, message = render(ntype, order, **extra)
        return await self.notify(
            user_id, ntype, title, message, order.id, dedup_window=dedup_window, now=now
        )

    @staticmethod
    def _cap_key(user_id: str, now: datetime) -> str:
        return f"notif:cap:{user_id}:{now:%Y%m%d%H}"

    async def _cap_reached(self, user_id: str, now: datetime) -> bool:
        """Fixed one-hour window per user. Redis trouble never blocks a notification."""
        try:
            redis: aioredis.Redis = await self._redis_getter()
            count = await redis.get(self._cap_key(user_id, now))
        except Exception:
            logger.warning("Notification cap check skipped: redis unavailable", exc_info=True)
            return False
        return int(count or 0) >= settings.NOTIFICATION_MAX_PER_USER_PER_HOUR

    async def _count_sent(self, user_id: str, now: datetime) -> None:
        key = self._cap_key(user_id, now)
        try:
            redis: aioredis.Redis = await self._redis_getter()
            if await redis.incr(key) == 1:
                await redis.expire(key, 3600)
        except Exception:
            logger.warning("Notification cap not counted: redis unavailable", exc_info=True)


class NotificationInboxService:
    def __init__(self, repo: NotificationRepository | None = None) -> None:
        self._repo = repo or NotificationRepository()

    async def list_notifications(
        self,
        db: AsyncSession,
        user_id: str,
        cursor: str | None,
        limit: int,
        unread_only: bool = False,
    ) -> NotificationListResponse:
        cursor_id = int(cursor) if cursor and cursor.isdigit() else None
        # Fetch limit+1 to detect has_more without a COUNT(*) query
        items = await self._repo.list_for_user(db, user_id, cursor_id, limit + 1, unread_only)
        has_more = len(items) > limit
        items = items[:limit]
        next_cursor = str(items[-1].id) if has_more and items else None
        return NotificationListResponse(
            items=[NotificationResponse.from_domain(n) for n in items],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    async def mark_read(
        self, db: AsyncSession, user_id: str, notification_id: int
    ) -> NotificationResponse:
        try:
            notification = await self._repo.mark_read(db, notification_id, user_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        if notification is None:
            raise NotificationNotFoundError(notification_id)
        return NotificationResponse.from_domain(notification)


async def cleanup_notifications(
    db: AsyncSession,
    now: datetime,
    repo: NotificationRepository | None = None,
) -> CleanupResult:
    """Collapse repeated notices and drop read notifications past retention."""
    repo = repo or NotificationRepository()
    cutoff = now - timedelta(days=settings.NOTIFICATION_RETENTION_DAYS)
    try:
        welcome = await repo.delete_excess_welcome(db, WELCOME_BACK_KEEP)
        duplicates = await repo.delete_duplicate_messages(db)
        expired = await repo.delete_old_read(db, cutoff)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info(
        "Notification cleanup: welcome=%d duplicates=%d expired=%d",
        welcome, duplicates, expired,
    )
    return CleanupResult(
        welcome_removed=welcome, duplicates_removed=duplicates, expired_removed=expired
    )
