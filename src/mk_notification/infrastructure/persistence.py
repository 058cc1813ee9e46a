"""NotificationRepository: raw SQL persistence for the notifications table."""
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.mk_notification.domain.models import Notification

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

# Opportunistic de-duplication: same (user, order, type) inside the window is skipped.
_INSERT_DEDUPED_SQL = text("""
    INSERT INTO notifications (user_id, order_id, type, title, message)
    SELECT :user_id, CAST(:order_id AS TEXT), :type, :title, :message
    WHERE NOT EXISTS (
        SELECT 1 FROM notifications
        WHERE user_id = :user_id
          AND type = :type
          AND order_id IS NOT DISTINCT FROM CAST(:order_id AS TEXT)
          AND created_at >= :since
    )
    RETURNING id
""")

_LIST_FOR_USER_SQL = text("""
    SELECT id, user_id, order_id, type, title, message, read, created_at
    FROM notifications
    WHERE user_id = :user_id
      AND (CAST(:cursor_id AS BIGINT) IS NULL OR id < :cursor_id)
      AND (CAST(:unread_only AS BOOLEAN) IS FALSE OR read = FALSE)
    ORDER BY id DESC
    LIMIT :limit
""")

_MARK_READ_SQL = text("""
    UPDATE notifications
    SET read = TRUE
    WHERE id = :id AND user_id = :user_id
    RETURNING id, user_id, order_id, type, title, message, read, created_at
""")

_DELETE_EXCESS_WELCOME_SQL = text("""
    DELETE FROM notifications n
    USING (
        SELECT id, ROW_NUMBER() OVER (
            PARTITION BY user_id ORDER BY created_at DESC, id DESC
        ) AS rn
        FROM notifications
        WHERE title ILIKE 'welcome back%'
    ) ranked
    WHERE n.id = ranked.id AND ranked.rn > :keep
""")

_DELETE_DUPLICATE_MESSAGES_SQL = text("""
    DELETE FROM notifications n
    USING (
        SELECT id, ROW_NUMBER() OVER (
            PARTITION BY user_id, title, message ORDER BY created_at DESC, id DESC
        ) AS rn
        FROM notifications
        WHERE title NOT ILIKE 'welcome back%'
    ) ranked
    WHERE n.id = ranked.id AND ranked.rn > 1
""")

_DELETE_OLD_READ_SQL = text("""
    DELETE FROM notifications
    WHERE read = TRUE AND created_at < :cutoff
""")


def _row_to_notification(row: Any) -> Notification:
    return Notification(
        id=row.id,
        user_id=row.user_id,
        order_id=row.order_id,
        type=row.type,
        title=row.title,
        message=row.message,
        read=row.read,
        created_at=row.created_at,
    )


class NotificationRepository:
    async def insert_deduped(
        self,
        db: AsyncSession,
        user_id: str,
        ntype: str,
        title: str,
        message: str,
        order_id: str | None,
        since: datetime,
    ) -> bool:
        """Insert unless an equivalent notification exists since ``since``. True if inserted."""
        result = await db.execute(
            _INSERT_DEDUPED_SQL,
            {
                "user_id": user_id,
                "order_id": order_id,
                "type": ntype,
                "title": title,
                "message": message,
                "since": since,
            },
        )
        return result.fetchone() is not None

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: str,
        cursor_id: int | None,
        limit: int,
        unread_only: bool = False,
    ) -> list[Notification]:
        result = await db.execute(
            _LIST_FOR_USER_SQL,
            {
                "user_id": user_id,
                "cursor_id": cursor_id,
                "unread_only": unread_only,
                "limit": limit,
            },
        )
        return [_row_to_notification(r) for r in result.fetchall()]

    async def mark_read(
        self, db: AsyncSession, notification_id: int, user_id: str
    ) -> Notification | None:
        result = await db.execute(_MARK_READ_SQL, {"id": notification_id, "user_id": user_id})
        row = result.fetchone()
        return _row_to_notification(row) if row else None

    async def delete_excess_welcome(self, db: AsyncSession, keep: int) -> int:
        result = await db.execute(_DELETE_EXCESS_WELCOME_SQL, {"keep": keep})
        return result.rowcount

    async def delete_duplicate_messages(self, db: AsyncSession) -> int:
        result = await db.execute(_DELETE_DUPLICATE_MESSAGES_SQL)
        return result.rowcount

    async def delete_old_read(self, db: AsyncSession, cutoff: datetime) -> int:
        result = await db.execute(_DELETE_OLD_READ_SQL, {"cutoff": cutoff})
        return result.rowcount
