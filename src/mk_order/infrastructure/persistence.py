# src/mk_order/infrastructure/persistence.py
"""OrderRepository: raw SQL persistence implementation.

Each status transition is one UPDATE whose WHERE clause is the transition's
precondition. Zero rows returned means the predicate did not hold at write
time; callers never check-then-write in Python.
"""
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.mk_common.enums import OrderStatus
from src.mk_order.domain.models import BookSnapshot, Order
from src.mk_order.domain.state_machine import (
    BUYER_CANCELLABLE,
    COLLECTABLE,
    PAID_OUT_FROM,
    PAYABLE,
    REFUNDABLE,
    in_lifecycle_order,
)

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------


def _in(statuses: frozenset[OrderStatus]) -> str:
    """Render a status set as the body of a SQL IN list."""
    return ", ".join(f"'{s}'" for s in in_lifecycle_order(statuses))


_COLUMNS = """
    id, payment_reference, line_number, buyer_id, buyer_email, seller_id,
    book_id, book_title, book_author, book_price,
    gross_amount, delivery_fee, total_amount, seller_amount, platform_fee,
    status, paid_at, commit_deadline, committed_at, ready_at,
    collected_at, collected_by, cancelled_at, cancelled_by, cancel_reason,
    refund_reference, refund_requested_at, refund_error, refunded_at,
    created_at, updated_at
"""

_INSERT_ORDER_SQL = text("""
    INSERT INTO orders (id, payment_reference, line_number, buyer_id, buyer_email, seller_id,
        book_id, book_title, book_author, book_price,
        gross_amount, delivery_fee, total_amount,
        status, paid_at, commit_deadline)
    VALUES (:id, :payment_reference, :line_number, :buyer_id, :buyer_email, :seller_id,
        :book_id, :book_title, :book_author, :book_price,
        :gross_amount, :delivery_fee, :total_amount,
        :status, :paid_at, :commit_deadline)
    ON CONFLICT (payment_reference, line_number) DO NOTHING
    RETURNING id
""")

_GET_ORDER_BY_ID_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM orders WHERE id = :id
""")

_LIST_BY_PAYMENT_REFERENCE_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM orders WHERE payment_reference = :payment_reference
    ORDER BY line_number
""")

_LIST_BY_BUYER_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM orders
    WHERE buyer_id = :user_id
      AND (CAST(:cursor_id AS TEXT) IS NULL OR id < :cursor_id)
      AND (CAST(:statuses_csv AS TEXT) IS NULL
           OR status = ANY(string_to_array(CAST(:statuses_csv AS TEXT), ',')))
    ORDER BY id DESC
    LIMIT :limit
""")

_LIST_BY_SELLER_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM orders
    WHERE seller_id = :user_id
      AND (CAST(:cursor_id AS TEXT) IS NULL OR id < :cursor_id)
      AND (CAST(:statuses_csv AS TEXT) IS NULL
           OR status = ANY(string_to_array(CAST(:statuses_csv AS TEXT), ',')))
    ORDER BY id DESC
    LIMIT :limit
""")

# pending_payment → paid. The only UPDATE that writes commit_deadline.
_CONFIRM_PAYMENT_SQL = text(f"""
    UPDATE orders
    SET status = 'paid', paid_at = :now, commit_deadline = :deadline
    WHERE id = :id AND status = 'pending_payment' AND commit_deadline IS NULL
    RETURNING {_COLUMNS}
""")

# paid → committed. Mutually exclusive with _EXPIRE_SQL on the deadline.
_COMMIT_SQL = text(f"""
    UPDATE orders
    SET status = 'committed', committed_at = :now
    WHERE id = :id AND seller_id = :seller_id
      AND status = 'paid' AND :now < commit_deadline
    RETURNING {_COLUMNS}
""")

_DECLINE_SQL = text(f"""
    UPDATE orders
    SET status = 'declined', cancelled_at = :now, cancelled_by = :seller_id,
        cancel_reason = :reason
    WHERE id = :id AND seller_id = :seller_id
      AND status = 'paid' AND :now < commit_deadline
    RETURNING {_COLUMNS}
""")

# paid → cancelled once the commit window has closed.
_EXPIRE_SQL = text(f"""
    UPDATE orders
    SET status = 'cancelled', cancelled_at = :now, cancelled_by = 'system',
        cancel_reason = 'commit_window_expired'
    WHERE id = :id AND status = 'paid' AND :now >= commit_deadline
    RETURNING {_COLUMNS}
""")

_MARK_READY_SQL = text(f"""
    UPDATE orders
    SET status = 'ready_for_collection', ready_at = :now
    WHERE id = :id AND seller_id = :seller_id AND status = 'committed'
    RETURNING {_COLUMNS}
""")

_MARK_COLLECTED_SQL = text(f"""
    UPDATE orders
    SET status = 'collected', collected_at = :now, collected_by = :collected_by
    WHERE id = :id
      AND status IN ({_in(COLLECTABLE)})
      AND (CAST(:seller_id AS TEXT) IS NULL OR seller_id = :seller_id)
    RETURNING {_COLUMNS}
""")

_CANCEL_BY_BUYER_SQL = text(f"""
    UPDATE orders
    SET status = 'cancelled', cancelled_at = :now, cancelled_by = :buyer_id,
        cancel_reason = :reason
    WHERE id = :id AND buyer_id = :buyer_id
      AND status IN ({_in(BUYER_CANCELLABLE)})
    RETURNING {_COLUMNS}
""")

_START_PAYOUT_SQL = text(f"""
    UPDATE orders
    SET status = 'payout_processing',
        seller_amount = :seller_amount, platform_fee = :platform_fee
    WHERE id = :id AND status IN ({_in(PAYABLE)})
    RETURNING {_COLUMNS}
""")

_MARK_PAID_OUT_SQL = text(f"""
    UPDATE orders
    SET status = 'paid_out'
    WHERE id = :id AND status IN ({_in(PAID_OUT_FROM)})
    RETURNING {_COLUMNS}
""")

_RECORD_REFUND_ATTEMPT_SQL = text(f"""
    UPDATE orders
    SET status = 'refund_pending',
        refund_reference = COALESCE(CAST(:refund_reference AS TEXT), refund_reference),
        refund_error = CAST(:refund_error AS TEXT),
        refund_requested_at = :now
    WHERE id = :id
      AND status IN ({_in(REFUNDABLE)})
      AND paid_at IS NOT NULL
    RETURNING {_COLUMNS}
""")

_MARK_REFUNDED_BY_REFUND_REF_SQL = text(f"""
    UPDATE orders
    SET status = 'refunded', refunded_at = :now, refund_error = NULL
    WHERE refund_reference = :refund_reference
      AND status IN ({_in(REFUNDABLE)})
    RETURNING {_COLUMNS}
""")

_MARK_REFUNDED_BY_ID_SQL = text(f"""
    UPDATE orders
    SET status = 'refunded', refunded_at = :now, refund_error = NULL
    WHERE id = :id
      AND status IN ({_in(REFUNDABLE)})
    RETURNING {_COLUMNS}
""")

_MARK_REFUNDED_BY_PAYMENT_SQL = text(f"""
    UPDATE orders
    SET status = 'refunded', refunded_at = :now, refund_error = NULL
    WHERE id = (
        SELECT id FROM orders
        WHERE payment_reference = :payment_reference
          AND total_amount = :amount
          AND status IN ({_in(REFUNDABLE)})
          AND (refund_reference IS NOT NULL
               OR (refund_requested_at IS NOT NULL AND refund_error IS NULL))
        ORDER BY refund_requested_at, line_number
        LIMIT 1
        FOR UPDATE
    )
      AND status IN ({_in(REFUNDABLE)})
    RETURNING {_COLUMNS}
""")

_LIST_EXPIRED_IDS_SQL = text("""
    SELECT id FROM orders
    WHERE status = 'paid' AND commit_deadline <= :now
      AND (CAST(:user_id AS TEXT) IS NULL OR buyer_id = :user_id OR seller_id = :user_id)
    ORDER BY commit_deadline
    LIMIT :limit
""")

_LIST_AWAITING_COMMIT_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM orders
    WHERE status = 'paid' AND commit_deadline > :now AND commit_deadline <= :horizon
    ORDER BY commit_deadline
""")

_LIST_AWAITING_COLLECTION_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM orders
    WHERE status IN ({_in(COLLECTABLE)})
      AND committed_at <= :committed_before
    ORDER BY committed_at
""")

_LIST_STALLED_REFUNDS_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM orders
    WHERE paid_at IS NOT NULL AND (
        (status = 'refund_pending' AND refund_reference IS NULL
         AND refund_requested_at <= :before)
        OR (status IN ({_in(REFUNDABLE - {OrderStatus.REFUND_PENDING})})
            AND refund_requested_at IS NULL
            AND cancelled_at <= :before)
    )
    ORDER BY cancelled_at
    LIMIT :limit
""")


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_order(row: Any) -> Order:
    """Convert a DB result row to an Order domain object."""
    return Order(
        id=row.id,
        payment_reference=row.payment_reference,
        line_number=row.line_number,
        buyer_id=row.buyer_id,
        buyer_email=row.buyer_email,
        seller_id=row.seller_id,
        book=BookSnapshot(
            book_id=row.book_id,
            title=row.book_title,
            author=row.book_author,
            price=row.book_price,
        ),
        gross_amount=row.gross_amount,
        delivery_fee=row.delivery_fee,
        total_amount=row.total_amount,
        seller_amount=row.seller_amount,
        platform_fee=row.platform_fee,
        status=row.status,
        paid_at=row.paid_at,
        commit_deadline=row.commit_deadline,
        committed_at=row.committed_at,
        ready_at=row.ready_at,
        collected_at=row.collected_at,
        collected_by=row.collected_by,
        cancelled_at=row.cancelled_at,
        cancelled_by=row.cancelled_by,
        cancel_reason=row.cancel_reason,
        refund_reference=row.refund_reference,
        refund_requested_at=row.refund_requested_at,
        refund_error=row.refund_error,
        refunded_at=row.refunded_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


async def _one_or_none(db: AsyncSession, stmt: Any, params: dict[str, Any]) -> Order | None:
    result = await db.execute(stmt, params)
    row = result.fetchone()
    return _row_to_order(row) if row else None


async def _all(db: AsyncSession, stmt: Any, params: dict[str, Any]) -> list[Order]:
    result = await db.execute(stmt, params)
    return [_row_to_order(row) for row in result.fetchall()]


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class OrderRepository:
    """Concrete implementation of OrderRepositoryProtocol using raw SQL."""

    async def insert_if_absent(self, order: Order, db: AsyncSession) -> bool:
        """Insert unless (payment_reference, line_number) already exists."""
        result = await db.execute(
            _INSERT_ORDER_SQL,
            {
                "id": order.id,
                "payment_reference": order.payment_reference,
                "line_number": order.line_number,
                "buyer_id": order.buyer_id,
                "buyer_email": order.buyer_email,
                "seller_id": order.seller_id,
                "book_id": order.book.book_id,
                "book_title": order.book.title,
                "book_author": order.book.author,
                "book_price": order.book.price,
                "gross_amount": order.gross_amount,
                "delivery_fee": order.delivery_fee,
                "total_amount": order.total_amount,
                "status": order.status,
                "paid_at": order.paid_at,
                "commit_deadline": order.commit_deadline,
            },
        )
        return result.fetchone() is not None

    async def get_by_id(self, order_id: str, db: AsyncSession) -> Order | None:
        return await _one_or_none(db, _GET_ORDER_BY_ID_SQL, {"id": order_id})

    async def list_by_payment_reference(
        self, payment_reference: str, db: AsyncSession
    ) -> list[Order]:
        return await _all(
            db, _LIST_BY_PAYMENT_REFERENCE_SQL, {"payment_reference": payment_reference}
        )

    async def list_by_user(
        self,
        user_id: str,
        role: str,
        statuses: list[str] | None,
        limit: int,
        cursor_id: str | None,
        db: AsyncSession,
    ) -> list[Order]:
        stmt = _LIST_BY_SELLER_SQL if role == "seller" else _LIST_BY_BUYER_SQL
        statuses_csv = ",".join(statuses) if statuses else None
        return await _all(
            db,
            stmt,
            {
                "user_id": user_id,
                "cursor_id": cursor_id,
                "statuses_csv": statuses_csv,
                "limit": limit,
            },
        )

    async def confirm_payment(
        self, order_id: str, now: datetime, deadline: datetime, db: AsyncSession
    ) -> Order | None:
        return await _one_or_none(
            db, _CONFIRM_PAYMENT_SQL, {"id": order_id, "now": now, "deadline": deadline}
        )

    async def commit(
        self, order_id: str, seller_id: str, now: datetime, db: AsyncSession
    ) -> Order | None:
        return await _one_or_none(
            db, _COMMIT_SQL, {"id": order_id, "seller_id": seller_id, "now": now}
        )

    async def decline(
        self, order_id: str, seller_id: str, reason: str, now: datetime, db: AsyncSession
    ) -> Order | None:
        return await _one_or_none(
            db,
            _DECLINE_SQL,
            {"id": order_id, "seller_id": seller_id, "reason": reason, "now": now},
        )

    async def expire(self, order_id: str, now: datetime, db: AsyncSession) -> Order | None:
        return await _one_or_none(db, _EXPIRE_SQL, {"id": order_id, "now": now})

    async def mark_ready(
        self, order_id: str, seller_id: str, now: datetime, db: AsyncSession
    ) -> Order | None:
        return await _one_or_none(
            db, _MARK_READY_SQL, {"id": order_id, "seller_id": seller_id, "now": now}
        )

    async def mark_collected(
        self, order_id: str, seller_id: str | None, collected_by: str, now: datetime,
        db: AsyncSession,
    ) -> Order | None:
        return await _one_or_none(
            db,
            _MARK_COLLECTED_SQL,
            {
                "id": order_id,
                "seller_id": seller_id,
                "collected_by": collected_by,
                "now": now,
            },
        )

    async def cancel_by_buyer(
        self, order_id: str, buyer_id: str, reason: str, now: datetime, db: AsyncSession
    ) -> Order | None:
        return await _one_or_none(
            db,
            _CANCEL_BY_BUYER_SQL,
            {"id": order_id, "buyer_id": buyer_id, "reason": reason, "now": now},
        )

    async def start_payout(
        self, order_id: str, seller_amount: int, platform_fee: int, db: AsyncSession
    ) -> Order | None:
        return await _one_or_none(
            db,
            _START_PAYOUT_SQL,
            {"id": order_id, "seller_amount": seller_amount, "platform_fee": platform_fee},
        )

    async def mark_paid_out(self, order_id: str, db: AsyncSession) -> Order | None:
        return await _one_or_none(db, _MARK_PAID_OUT_SQL, {"id": order_id})

    async def record_refund_attempt(
        self, order_id: str, refund_reference: str | None, refund_error: str | None,
        now: datetime, db: AsyncSession,
    ) -> Order | None:
        return await _one_or_none(
            db,
            _RECORD_REFUND_ATTEMPT_SQL,
            {
                "id": order_id,
                "refund_reference": refund_reference,
                "refund_error": refund_error[:500] if refund_error else None,
                "now": now,
            },
        )

    async def mark_refunded(
        self, refund_reference: str | None, payment_reference: str | None, amount: int,
        now: datetime, db: AsyncSession,
    ) -> list[Order]:
        """Match the gateway refund id first, then fall back to charge reference + amount.

        The fallback settles at most one line, and only a line whose refund
        request was accepted; a failed attempt stays outstanding.
        """
        if refund_reference:
            orders = await _all(
                db,
                _MARK_REFUNDED_BY_REFUND_REF_SQL,
                {"refund_reference": refund_reference, "now": now},
            )
            if orders:
                return orders
        if not payment_reference:
            return []
        order = await _one_or_none(
            db,
            _MARK_REFUNDED_BY_PAYMENT_SQL,
            {"payment_reference": payment_reference, "amount": amount, "now": now},
        )
        return [order] if order else []

    async def mark_refunded_by_id(
        self, order_id: str, now: datetime, db: AsyncSession
    ) -> Order | None:
        return await _one_or_none(db, _MARK_REFUNDED_BY_ID_SQL, {"id": order_id, "now": now})

    async def list_expired_ids(
        self, now: datetime, limit: int, db: AsyncSession, user_id: str | None = None
    ) -> list[str]:
        result = await db.execute(
            _LIST_EXPIRED_IDS_SQL, {"now": now, "limit": limit, "user_id": user_id}
        )
        return [row.id for row in result.fetchall()]

    async def list_awaiting_commit_before(
        self, now: datetime, horizon: datetime, db: AsyncSession
    ) -> list[Order]:
        return await _all(db, _LIST_AWAITING_COMMIT_SQL, {"now": now, "horizon": horizon})

    async def list_awaiting_collection_since(
        self, committed_before: datetime, db: AsyncSession
    ) -> list[Order]:
        return await _all(
            db, _LIST_AWAITING_COLLECTION_SQL, {"committed_before": committed_before}
        )

    async def list_stalled_refunds(
        self, attempted_before: datetime, limit: int, db: AsyncSession
    ) -> list[Order]:
        return await _all(
            db, _LIST_STALLED_REFUNDS_SQL, {"before": attempted_before, "limit": limit}
        )
