"""CommitmentClock: deadline enforcement and other periodic settlement jobs.

The scheduled sweep and the client-triggered manual check both go through
expire_order(), whose UPDATE only matches ``status='paid' AND now >=
commit_deadline``. Whichever caller runs first wins; the others see zero
rows and report nothing done. Jobs hold no state between runs.
"""
import logging
import math
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.mk_catalog.infrastructure.persistence import BookAvailabilityRepository
from src.mk_common.enums import NotificationType, OrderStatus
from src.mk_common.errors import OrderNotFoundError, UnauthorizedActionError
from src.mk_notification.application.service import NotificationFanout
from src.mk_order.application.service import SettlementService
from src.mk_order.domain.repository import OrderRepositoryProtocol
from src.mk_order.domain.state_machine import commit_window_expired
from src.mk_order.infrastructure.persistence import OrderRepository
from src.mk_payout.application.service import RefundService
from src.mk_scheduler.application.schemas import (
    ExpiryCheckResponse,
    RefundRetryResult,
    ReminderResult,
    SweepResult,
)

logger = logging.getLogger(__name__)


class CommitmentClock:
    def __init__(
        self,
        repo: OrderRepositoryProtocol | None = None,
        books: BookAvailabilityRepository | None = None,
        fanout: NotificationFanout | None = None,
        refunds: RefundService | None = None,
        settlement: SettlementService | None = None,
    ) -> None:
        self._repo: OrderRepositoryProtocol = repo or OrderRepository()
        self._books = books or BookAvailabilityRepository()
        self._fanout = fanout or NotificationFanout()
        self._refunds = refunds or RefundService(order_repo=self._repo, fanout=self._fanout)
        self._settlement = settlement or SettlementService(
            repo=self._repo, books=self._books, refunds=self._refunds, fanout=self._fanout
        )

    async def expire_order(self, db: AsyncSession, order_id: str, now: datetime) -> bool:
        """Cancel one paid order past its deadline. True only for the call that won."""
        try:
            order = await self._repo.expire(order_id, now, db)
            if order is not None:
                await self._books.relist(order.book.book_id, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if order is None:
            logger.info("Expiry not applied (committed, already expired or not due): %s", order_id)
            return False

        logger.info("Order expired: order=%s deadline=%s", order.id, order.commit_deadline)
        await self._settlement.settle_cancellation(
            db,
            order,
            buyer_notice=NotificationType.ORDER_EXPIRED,
            seller_notice=NotificationType.ORDER_EXPIRED,
        )
        return True

    async def run_expiry_sweep(self, db: AsyncSession, now: datetime) -> SweepResult:
        result = SweepResult()
        batch_size = settings.EXPIRY_SWEEP_BATCH_SIZE
        seen: set[str] = set()
        while True:
            ids = await self._repo.list_expired_ids(now, batch_size, db)
            fresh = [order_id for order_id in ids if order_id not in seen]
            if not fresh:
                break
            for order_id in fresh:
                seen.add(order_id)
                result.scanned += 1
                try:
                    if await self.expire_order(db, order_id, now):
                        result.expired += 1
                    else:
                        result.skipped += 1
                except Exception:
                    result.failed += 1
                    logger.warning("Expiry failed for order %s", order_id, exc_info=True)
            if len(ids) < batch_size:
                break
        logger.info(
            "Expiry sweep: scanned=%d expired=%d skipped=%d failed=%d",
            result.scanned, result.expired, result.skipped, result.failed,
        )
        return result

    async def manual_expiry_check(
        self, db: AsyncSession, user_id: str, now: datetime, order_id: str | None = None
    ) -> ExpiryCheckResponse:
        """Client-triggered check, scoped to one order or to all of the caller's orders."""
        if order_id is not None:
            order = await self._repo.get_by_id(order_id, db)
            if order is None:
                raise OrderNotFoundError(order_id)
            if not order.is_party(user_id):
                raise UnauthorizedActionError(order_id, "check")
            expired: list[str] = []
            status = order.status
            if commit_window_expired(order, now) and await self.expire_order(db, order_id, now):
                expired.append(order_id)
                status = OrderStatus.CANCELLED.value
            return ExpiryCheckResponse(checked=1, expired_order_ids=expired, order_status=status)

        ids = await self._repo.list_expired_ids(
            now, settings.EXPIRY_SWEEP_BATCH_SIZE, db, user_id=user_id
        )
        expired = [oid for oid in ids if await self.expire_order(db, oid, now)]
        return ExpiryCheckResponse(checked=len(ids), expired_order_ids=expired)

    async def send_commit_reminders(self, db: AsyncSession, now: datetime) -> ReminderResult:
        horizon = now + timedelta(hours=settings.COMMIT_REMINDER_LEAD_HOURS)
        repeat = timedelta(hours=settings.REMINDER_REPEAT_HOURS)
        orders = await self._repo.list_awaiting_commit_before(now, horizon, db)
        result = ReminderResult(candidates=len(orders))
        for order in orders:
            remaining = (order.commit_deadline - now).total_seconds() if order.commit_deadline else 0
            hours_left = max(1, math.ceil(remaining / 3600))
            if await self._fanout.notify_order(
                order.seller_id,
                NotificationType.COMMIT_REMINDER,
                order,
                dedup_window=repeat,
                now=now,
                hours_left=hours_left,
            ):
                result.sent += 1
        logger.info("Commit reminders: candidates=%d sent=%d", result.candidates, result.sent)
        return result

    async def send_collection_reminders(self, db: AsyncSession, now: datetime) -> ReminderResult:
        committed_before = now - timedelta(days=settings.COLLECTION_REMINDER_AFTER_DAYS)
        repeat = timedelta(hours=settings.REMINDER_REPEAT_HOURS)
        orders = await self._repo.list_awaiting_collection_since(committed_before, db)
        result = ReminderResult(candidates=len(orders))
        for order in orders:
            if await self._fanout.notify_order(
                order.buyer_id,
                NotificationType.COLLECTION_REMINDER,
                order,
                dedup_window=repeat,
                now=now,
            ):
                result.sent += 1
        logger.info(
            "Collection reminders: candidates=%d sent=%d", result.candidates, result.sent
        )
        return result

    async def retry_stalled_refunds(self, db: AsyncSession, now: datetime) -> RefundRetryResult:
        attempted_before = now - timedelta(minutes=settings.REFUND_RETRY_AFTER_MINUTES)
        orders = await self._repo.list_stalled_refunds(
            attempted_before, settings.EXPIRY_SWEEP_BATCH_SIZE, db
        )
        result = RefundRetryResult(candidates=len(orders))
        for order in orders:
            updated = await self._refunds.request_refund(db, order)
            if updated is not None and (
                updated.refund_reference or updated.status == OrderStatus.REFUNDED
            ):
                result.accepted += 1
            else:
                result.still_pending += 1
        logger.info(
            "Refund retry: candidates=%d accepted=%d still_pending=%d",
            result.candidates, result.accepted, result.still_pending,
        )
        return result
