"""Seller payouts and buyer refunds.

Payout flow (no gateway call ever runs inside an open transaction):
  1. claim: INSERT pending payout_log gated on order status + active index; COMMIT
  2. gateway: POST /transfer
  3a. accepted: log pending→processing, order →payout_processing with split; COMMIT
  3b. any failure of step 2: log →failed; COMMIT; re-raise (as PayoutFailedError
      unless the task was cancelled)
The terminal success/failure arrives later through the transfer webhooks.
"""
import asyncio
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.mk_common.datetime_utils import utc_now
from src.mk_common.enums import NotificationType, OrderStatus
from src.mk_common.errors import (
    AlreadyProcessedError,
    AppError,
    BankingDetailsMissingError,
    InvalidStateError,
    OrderNotFoundError,
    PaymentGatewayError,
    PayoutFailedError,
    UnauthorizedActionError,
)
from src.mk_common.id_generator import new_payout_reference
from src.mk_notification.application.service import NotificationFanout
from src.mk_order.domain.models import Order
from src.mk_order.domain.repository import OrderRepositoryProtocol
from src.mk_order.domain.state_machine import PAYABLE, in_lifecycle_order
from src.mk_order.infrastructure.persistence import OrderRepository
from src.mk_payout.application.schemas import PayoutListResponse, PayoutResponse
from src.mk_payout.domain.split import split
from src.mk_payout.infrastructure.paystack_client import PaystackClient
from src.mk_payout.infrastructure.persistence import (
    BankingSubaccountRepository,
    PayoutLogRepository,
)

logger = logging.getLogger(__name__)

_INITIAL_STATUSES = (OrderStatus.COLLECTED.value,)
_RETRY_STATUSES = in_lifecycle_order(PAYABLE)


class PayoutService:
    def __init__(
        self,
        order_repo: OrderRepositoryProtocol | None = None,
        payout_repo: PayoutLogRepository | None = None,
        banking_repo: BankingSubaccountRepository | None = None,
        gateway: PaystackClient | None = None,
        fanout: NotificationFanout | None = None,
    ) -> None:
        self._orders: OrderRepositoryProtocol = order_repo or OrderRepository()
        self._payouts = payout_repo or PayoutLogRepository()
        self._banking = banking_repo or BankingSubaccountRepository()
        self._gateway = gateway or PaystackClient()
        self._fanout = fanout or NotificationFanout()

    async def initiate_payout(self, db: AsyncSession, order_id: str) -> PayoutResponse:
        return await self._pay(db, order_id, _INITIAL_STATUSES, action="pay out")

    async def retry_payout(self, db: AsyncSession, order_id: str) -> PayoutResponse:
        """Operator retry after transfer.failed; same claim, wider order status set."""
        return await self._pay(db, order_id, _RETRY_STATUSES, action="retry payout for")

    async def list_payouts(
        self, db: AsyncSession, order_id: str, seller_id: str
    ) -> PayoutListResponse:
        order = await self._orders.get_by_id(order_id, db)
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.seller_id != seller_id:
            raise UnauthorizedActionError(order_id, "view payouts for")
        logs = await self._payouts.list_for_order(db, order_id)
        return PayoutListResponse(
            order_id=order_id, items=[PayoutResponse.from_domain(log) for log in logs]
        )

    async def _pay(
        self, db: AsyncSession, order_id: str, allowed: tuple[str, ...], action: str
    ) -> PayoutResponse:
        order = await self._orders.get_by_id(order_id, db)
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.status not in allowed:
            raise await self._claim_lost_error(db, order, action)

        account = await self._banking.get_for_user(db, order.seller_id)
        if account is None or not account.can_receive_transfers:
            raise BankingDetailsMissingError(order.seller_id)

        amounts = split(order.gross_amount, order.delivery_fee)
        reference = new_payout_reference(order.id)

        # Step 1: claim
        try:
            log = await self._payouts.claim(
                db,
                order.id,
                amounts.seller_amount,
                amounts.platform_fee,
                account.recipient_code or "",
                reference,
                allowed,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        if log is None:
            current = await self._orders.get_by_id(order_id, db)
            raise await self._claim_lost_error(db, current or order, action)

        # Step 2: gateway
        try:
            result = await self._gateway.transfer(
                amount=amounts.seller_amount,
                recipient_code=log.recipient_code,
                reference=log.reference,
                reason=f"Payout for {order.book.title}",
                metadata={"order_id": order.id, "seller_id": order.seller_id},
            )
        except PaymentGatewayError as exc:
            logger.error(
                "Payout transfer rejected: order=%s reference=%s status=%s",
                order.id, log.reference, exc.status_code,
            )
            await self._record_transfer_failure(db, order, log.id or 0, str(exc), exc.payload)
            raise PayoutFailedError(order.id) from exc
        except asyncio.CancelledError:
            logger.warning(
                "Payout transfer cancelled: order=%s reference=%s", order.id, log.reference
            )
            await self._record_transfer_failure(
                db, order, log.id or 0, "transfer call cancelled", {}, notify=False
            )
            raise
        except Exception as exc:
            logger.exception(
                "Payout transfer errored: order=%s reference=%s", order.id, log.reference
            )
            await self._record_transfer_failure(
                db, order, log.id or 0, f"{type(exc).__name__}: {exc}", {"error": repr(exc)}
            )
            raise PayoutFailedError(order.id) from exc

        # Step 3: record acceptance
        try:
            processing = await self._payouts.mark_processing(
                db, log.id or 0, result.transfer_code, result.raw
            )
            await self._orders.start_payout(
                order.id, amounts.seller_amount, amounts.platform_fee, db
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "Payout initiated: order=%s reference=%s amount=%d fee=%d",
            order.id, log.reference, amounts.seller_amount, amounts.platform_fee,
        )
        return PayoutResponse.from_domain(processing or log)

    async def _record_transfer_failure(
        self,
        db: AsyncSession,
        order: Order,
        log_id: int,
        reason: str,
        payload: dict[str, Any],
        notify: bool = True,
    ) -> None:
        """Release the claim: a failed log no longer blocks retry_payout."""
        try:
            await self._payouts.mark_failed(db, log_id, reason, payload)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        if notify:
            await self._fanout.notify_order(order.seller_id, NotificationType.PAYOUT_FAILED, order)

    async def _claim_lost_error(self, db: AsyncSession, order: Order, action: str) -> AppError:
        active = await self._payouts.get_active_for_order(db, order.id)
        if active is not None or order.status == OrderStatus.PAID_OUT:
            logger.info("Payout already claimed: order=%s", order.id)
            return AlreadyProcessedError(order.id)
        return InvalidStateError(order.id, action, order.status)


class RefundService:
    """Best-effort refund after a committed cancellation or decline.

    Never raises: the cancellation is already durable, and an order left
    in cancelled/declined or refund_pending without a gateway reference is
    picked up by the stalled-refund job.
    """

    def __init__(
        self,
        order_repo: OrderRepositoryProtocol | None = None,
        gateway: PaystackClient | None = None,
        fanout: NotificationFanout | None = None,
    ) -> None:
        self._orders: OrderRepositoryProtocol = order_repo or OrderRepository()
        self._gateway = gateway or PaystackClient()
        self._fanout = fanout or NotificationFanout()

    async def request_refund(self, db: AsyncSession, order: Order) -> Order | None:
        if not order.payment_captured:
            return None
        now = utc_now()
        try:
            try:
                result = await self._gateway.refund(
                    transaction_reference=order.payment_reference,
                    amount=order.total_amount,
                    customer_note=f"Refund for {order.book.title}",
                    merchant_note=f"Order {order.id} {order.status}: {order.cancel_reason or ''}",
                )
            except PaymentGatewayError as exc:
                logger.warning("Refund request failed: order=%s error=%s", order.id, exc)
                updated = await self._orders.record_refund_attempt(
                    order.id, None, str(exc)[:500], now, db
                )
                await db.commit()
                return updated

            if result.already_refunded:
                updated = await self._orders.mark_refunded_by_id(order.id, now, db)
                await db.commit()
                if updated is not None:
                    await self._fanout.notify_order(
                        updated.buyer_id, NotificationType.REFUND_PROCESSED, updated
                    )
                return updated

            updated = await self._orders.record_refund_attempt(
                order.id, result.refund_reference, None, now, db
            )
            await db.commit()
            logger.info(
                "Refund requested: order=%s refund=%s amount=%d",
                order.id, result.refund_reference, order.total_amount,
            )
            return updated
        except Exception:
            await db.rollback()
            logger.warning("Refund bookkeeping failed: order=%s", order.id, exc_info=True)
            return None
