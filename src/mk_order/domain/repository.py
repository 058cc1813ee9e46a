# src/mk_order/domain/repository.py
"""OrderRepository Protocol: interface contract for persistence layer.

Every mutating method is a single predicate-gated UPDATE ... RETURNING.
``None`` means the predicate did not hold (another actor won, or the caller's
preconditions failed); the caller re-reads to explain why.
"""
from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.mk_order.domain.models import Order


class OrderRepositoryProtocol(Protocol):
    async def insert_if_absent(self, order: Order, db: AsyncSession) -> bool: ...

    async def get_by_id(self, order_id: str, db: AsyncSession) -> Order | None: ...

    async def list_by_payment_reference(
        self, payment_reference: str, db: AsyncSession
    ) -> list[Order]: ...

    async def list_by_user(
        self,
        user_id: str,
        role: str,
        statuses: list[str] | None,
        limit: int,
        cursor_id: str | None,
        db: AsyncSession,
    ) -> list[Order]: ...

    async def confirm_payment(
        self, order_id: str, now: datetime, deadline: datetime, db: AsyncSession
    ) -> Order | None: ...

    async def commit(
        self, order_id: str, seller_id: str, now: datetime, db: AsyncSession
    ) -> Order | None: ...

    async def decline(
        self, order_id: str, seller_id: str, reason: str, now: datetime, db: AsyncSession
    ) -> Order | None: ...

    async def expire(self, order_id: str, now: datetime, db: AsyncSession) -> Order | None: ...

    async def mark_ready(
        self, order_id: str, seller_id: str, now: datetime, db: AsyncSession
    ) -> Order | None: ...

    async def mark_collected(
        self, order_id: str, seller_id: str | None, collected_by: str, now: datetime,
        db: AsyncSession,
    ) -> Order | None: ...

    async def cancel_by_buyer(
        self, order_id: str, buyer_id: str, reason: str, now: datetime, db: AsyncSession
    ) -> Order | None: ...

    async def start_payout(
        self, order_id: str, seller_amount: int, platform_fee: int, db: AsyncSession
    ) -> Order | None: ...

    async def mark_paid_out(self, order_id: str, db: AsyncSession) -> Order | None: ...

    async def record_refund_attempt(
        self, order_id: str, refund_reference: str | None, refund_error: str | None,
        now: datetime, db: AsyncSession,
    ) -> Order | None: ...

    async def mark_refunded(
        self, refund_reference: str | None, payment_reference: str | None, amount: int,
        now: datetime, db: AsyncSession,
    ) -> list[Order]: ...

    async def mark_refunded_by_id(
        self, order_id: str, now: datetime, db: AsyncSession
    ) -> Order | None: ...

    async def list_expired_ids(
        self, now: datetime, limit: int, db: AsyncSession, user_id: str | None = None
    ) -> list[str]: ...

    async def list_awaiting_commit_before(
        self, now: datetime, horizon: datetime, db: AsyncSession
    ) -> list[Order]: ...

    async def list_awaiting_collection_since(
        self, committed_before: datetime, db: AsyncSession
    ) -> list[Order]: ...

    async def list_stalled_refunds(
        self, attempted_before: datetime, limit: int, db: AsyncSession
    ) -> list[Order]: ...
