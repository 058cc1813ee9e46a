# src/mk_order/application/service.py
"""SettlementService: seller and buyer transitions on an order.

Each transition is one predicate-gated UPDATE committed on its own (plus the
book relist where the order leaves the sale). Side effects run after the
commit: refunds and payouts talk to the gateway, notifications write through
their own session. None of them can undo the transition.

A lost conditional update is re-read and classified. When the re-read shows
the caller's own transition already applied, the call is an idempotent
success and no side effects are repeated.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.mk_catalog.infrastructure.persistence import BookAvailabilityRepository
from src.mk_common.datetime_utils import utc_now
from src.mk_common.enums import COURIER_ACTOR, NotificationType, OrderStatus
from src.mk_common.errors import AppError, OrderNotFoundError, UnauthorizedActionError
from src.mk_notification.application.service import NotificationFanout
from src.mk_order.application.schemas import OrderListResponse, OrderResponse
from src.mk_order.domain.models import Order
from src.mk_order.domain.repository import OrderRepositoryProtocol
from src.mk_order.domain.state_machine import (
    CANCELLED_OR_LATER,
    COLLECTED_OR_LATER,
    DECLINED_OR_LATER,
    explain_failure,
    explain_seller_decision_failure,
)
from src.mk_order.infrastructure.persistence import OrderRepository
from src.mk_payout.application.service import PayoutService, RefundService

logger = logging.getLogger(__name__)


class SettlementService:
    def __init__(
        self,
        repo: OrderRepositoryProtocol | None = None,
        books: BookAvailabilityRepository | None = None,
        refunds: RefundService | None = None,
        payouts: PayoutService | None = None,
        fanout: NotificationFanout | None = None,
    ) -> None:
        self._repo: OrderRepositoryProtocol = repo or OrderRepository()
        self._books = books or BookAvailabilityRepository()
        self._fanout = fanout or NotificationFanout()
        self._refunds = refunds or RefundService(order_repo=self._repo, fanout=self._fanout)
        self._payouts = payouts or PayoutService(order_repo=self._repo, fanout=self._fanout)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_order(self, db: AsyncSession, order_id: str, user_id: str) -> OrderResponse:
        order = await self._repo.get_by_id(order_id, db)
        if order is None:
            raise OrderNotFoundError(order_id)
        if not order.is_party(user_id):
            raise UnauthorizedActionError(order_id, "view")
        return OrderResponse.from_domain(order)

    async def list_orders(
        self,
        db: AsyncSession,
        user_id: str,
        role: str,
        status: str | None,
        limit: int,
        cursor: str | None,
    ) -> OrderListResponse:
        statuses = [status] if status else None
        orders = await self._repo.list_by_user(
            user_id=user_id,
            role=role,
            statuses=statuses,
            limit=limit + 1,
            cursor_id=cursor,
            db=db,
        )
        has_more = len(orders) > limit
        if has_more:
            orders = orders[:limit]
        next_cursor = orders[-1].id if has_more else None
        return OrderListResponse(
            items=[OrderResponse.from_domain(o) for o in orders],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    # ------------------------------------------------------------------
    # Seller decisions
    # ------------------------------------------------------------------

    async def commit(self, db: AsyncSession, order_id: str, seller_id: str) -> OrderResponse:
        now = utc_now()
        try:
            order = await self._repo.commit(order_id, seller_id, now, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if order is None:
            current = await self._repo.get_by_id(order_id, db)
            if (
                current is not None
                and current.seller_id == seller_id
                and current.status == OrderStatus.COMMITTED
            ):
                logger.info("Commit replay: order=%s seller=%s", order_id, seller_id)
                return OrderResponse.from_domain(current)
            error = explain_seller_decision_failure(current, order_id, seller_id, "commit", now)
            logger.info("Commit rejected: order=%s code=%d", order_id, error.code)
            raise error

        logger.info("Order committed: order=%s seller=%s", order.id, seller_id)
        await self._fanout.notify_order(order.buyer_id, NotificationType.SALE_COMMITTED, order)
        await self._fanout.notify_order(
            order.seller_id, NotificationType.COMMITMENT_CONFIRMED, order
        )
        return OrderResponse.from_domain(order)

    async def decline(
        self, db: AsyncSession, order_id: str, seller_id: str, reason: str
    ) -> OrderResponse:
        now = utc_now()
        try:
            order = await self._repo.decline(order_id, seller_id, reason, now, db)
            if order is not None:
                await self._books.relist(order.book.book_id, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if order is None:
            current = await self._repo.get_by_id(order_id, db)
            if (
                current is not None
                and current.seller_id == seller_id
                and current.status in DECLINED_OR_LATER
                and current.cancelled_by == seller_id
            ):
                logger.info("Decline replay: order=%s seller=%s", order_id, seller_id)
                return OrderResponse.from_domain(current)
            error = explain_seller_decision_failure(current, order_id, seller_id, "decline", now)
            logger.info("Decline rejected: order=%s code=%d", order_id, error.code)
            raise error

        logger.info("Order declined: order=%s seller=%s", order.id, seller_id)
        settled = await self.settle_cancellation(
            db,
            order,
            buyer_notice=NotificationType.ORDER_DECLINED,
            seller_notice=NotificationType.ORDER_CANCELLED,
        )
        return OrderResponse.from_domain(settled)

    async def mark_ready(self, db: AsyncSession, order_id: str, seller_id: str) -> OrderResponse:
        now = utc_now()
        try:
            order = await self._repo.mark_ready(order_id, seller_id, now, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if order is None:
            current = await self._repo.get_by_id(order_id, db)
            if (
                current is not None
                and current.seller_id == seller_id
                and current.status == OrderStatus.READY_FOR_COLLECTION
            ):
                return OrderResponse.from_domain(current)
            raise explain_failure(
                current, order_id, seller_id, current.seller_id if current else None,
                "mark ready for collection",
            )

        logger.info("Order ready for collection: order=%s", order.id)
        await self._fanout.notify_order(
            order.buyer_id, NotificationType.READY_FOR_COLLECTION, order
        )
        return OrderResponse.from_domain(order)

    async def mark_collected(
        self,
        db: AsyncSession,
        order_id: str,
        actor_id: str,
        via_courier: bool = False,
        notes: str | None = None,
    ) -> OrderResponse:
        """Seller confirmation, or courier confirmation through the service-token path."""
        now = utc_now()
        seller_id = None if via_courier else actor_id
        collected_by = actor_id or COURIER_ACTOR
        try:
            order = await self._repo.mark_collected(order_id, seller_id, collected_by, now, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if order is None:
            current = await self._repo.get_by_id(order_id, db)
            if (
                current is not None
                and current.status in COLLECTED_OR_LATER
                and (via_courier or current.seller_id == actor_id)
            ):
                logger.info("Collection replay: order=%s", order_id)
                return OrderResponse.from_domain(current)
            allowed_actor = None if via_courier else (current.seller_id if current else None)
            raise explain_failure(current, order_id, actor_id, allowed_actor, "mark collected")

        logger.info("Order collected: order=%s by=%s notes=%s", order.id, collected_by, notes)
        await self._fanout.notify_order(order.buyer_id, NotificationType.ORDER_COLLECTED, order)
        await self._fanout.notify_order(order.seller_id, NotificationType.ORDER_COLLECTED, order)

        if settings.AUTO_PAYOUT_ON_COLLECTION:
            order = await self._auto_payout(db, order)
        return OrderResponse.from_domain(order)

    async def _auto_payout(self, db: AsyncSession, order: Order) -> Order:
        try:
            await self._payouts.initiate_payout(db, order.id)
        except AppError as exc:
            logger.info("Auto payout skipped: order=%s code=%d", order.id, exc.code)
            return order
        except Exception:
            logger.warning("Auto payout failed: order=%s", order.id, exc_info=True)
            return order
        return await self._repo.get_by_id(order.id, db) or order

    # ------------------------------------------------------------------
    # Buyer cancellation
    # ------------------------------------------------------------------

    async def cancel(
        self, db: AsyncSession, order_id: str, buyer_id: str, reason: str
    ) -> OrderResponse:
        now = utc_now()
        try:
            order = await self._repo.cancel_by_buyer(order_id, buyer_id, reason, now, db)
            if order is not None:
                await self._books.relist(order.book.book_id, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if order is None:
            current = await self._repo.get_by_id(order_id, db)
            if (
                current is not None
                and current.buyer_id == buyer_id
                and current.status in CANCELLED_OR_LATER
                and current.cancelled_by == buyer_id
            ):
                logger.info("Cancel replay: order=%s buyer=%s", order_id, buyer_id)
                return OrderResponse.from_domain(current)
            raise explain_failure(
                current, order_id, buyer_id, current.buyer_id if current else None, "cancel"
            )

        logger.info("Order cancelled by buyer: order=%s buyer=%s", order.id, buyer_id)
        settled = await self.settle_cancellation(
            db,
            order,
            buyer_notice=NotificationType.ORDER_CANCELLED,
            seller_notice=NotificationType.ORDER_CANCELLED,
        )
        return OrderResponse.from_domain(settled)

    # ------------------------------------------------------------------
    # Shared post-cancellation path (decline, buyer cancel, expiry)
    # ------------------------------------------------------------------

    async def settle_cancellation(
        self,
        db: AsyncSession,
        order: Order,
        buyer_notice: NotificationType,
        seller_notice: NotificationType,
    ) -> Order:
        """Best-effort refund, then notify both parties. Never raises."""
        refunded = await self._refunds.request_refund(db, order)
        current = refunded or order
        await self._fanout.notify_order(current.buyer_id, buyer_notice, current)
        await self._fanout.notify_order(current.seller_id, seller_notice, current)
        return current
