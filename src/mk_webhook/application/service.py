"""WebhookReconciler: applies verified gateway events to orders and payout logs.

Every event type is idempotent: charges are keyed by (payment_reference,
line_number), transfers by our payout reference, refunds by the gateway
refund id. A redelivered event finds its effect already applied, writes
nothing and sends no notifications.
"""
import json
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.mk_catalog.infrastructure.persistence import BookAvailabilityRepository
from src.mk_common.datetime_utils import commit_deadline_for, utc_now
from src.mk_common.enums import NotificationType, OrderStatus, PayoutStatus
from src.mk_common.errors import InvalidWebhookSignatureError, MalformedWebhookError
from src.mk_common.id_generator import new_order_id
from src.mk_notification.application.service import NotificationFanout
from src.mk_order.domain.models import BookSnapshot, Order
from src.mk_order.domain.repository import OrderRepositoryProtocol
from src.mk_order.infrastructure.persistence import OrderRepository
from src.mk_payout.infrastructure.persistence import PayoutLogRepository
from src.mk_webhook.domain.events import (
    ChargeSuccessEvent,
    RefundProcessedEvent,
    TransferFailedEvent,
    TransferSuccessEvent,
    WebhookEvent,
    parse_event,
)
from src.mk_webhook.domain.signature import verify_signature
from src.mk_webhook.infrastructure.persistence import record_webhook_event

logger = logging.getLogger(__name__)

APPLIED = "applied"
REPLAYED = "replayed"
IGNORED = "ignored"


@dataclass
class WebhookOutcome:
    event: str
    outcome: str
    reference: str | None = None
    order_ids: tuple[str, ...] = ()


def _event_reference(event: WebhookEvent) -> str | None:
    if isinstance(event, (ChargeSuccessEvent, TransferSuccessEvent, TransferFailedEvent)):
        return event.data.reference
    if isinstance(event, RefundProcessedEvent):
        return event.data.transaction_reference
    ref = event.data.get("reference")
    return str(ref) if ref is not None else None


class WebhookReconciler:
    def __init__(
        self,
        order_repo: OrderRepositoryProtocol | None = None,
        payout_repo: PayoutLogRepository | None = None,
        books: BookAvailabilityRepository | None = None,
        fanout: NotificationFanout | None = None,
    ) -> None:
        self._orders: OrderRepositoryProtocol = order_repo or OrderRepository()
        self._payouts = payout_repo or PayoutLogRepository()
        self._books = books or BookAvailabilityRepository()
        self._fanout = fanout or NotificationFanout()

    async def handle(
        self, db: AsyncSession, raw_body: bytes, signature: str | None
    ) -> WebhookOutcome:
        """Verify, parse, audit and apply one delivery."""
        if settings.WEBHOOK_VERIFY_SIGNATURE and not verify_signature(
            raw_body, signature, settings.PAYSTACK_SECRET_KEY
        ):
            logger.warning("Webhook rejected: invalid signature")
            raise InvalidWebhookSignatureError()
        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise MalformedWebhookError("body is not valid JSON") from None

        event = parse_event(payload)
        reference = _event_reference(event)
        try:
            await record_webhook_event(db, event.event, reference, payload)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if isinstance(event, ChargeSuccessEvent):
            return await self.apply_charge_success(db, event)
        if isinstance(event, TransferSuccessEvent):
            return await self.apply_transfer_success(db, event)
        if isinstance(event, TransferFailedEvent):
            return await self.apply_transfer_failed(db, event)
        if isinstance(event, RefundProcessedEvent):
            return await self.apply_refund_processed(db, event)
        logger.info("Webhook ignored: unknown event %s", event.event)
        return WebhookOutcome(event=event.event, outcome=IGNORED, reference=reference)

    # ------------------------------------------------------------------
    # charge.success
    # ------------------------------------------------------------------

    async def apply_charge_success(
        self, db: AsyncSession, event: ChargeSuccessEvent
    ) -> WebhookOutcome:
        data = event.data
        now = utc_now()
        deadline = commit_deadline_for(now, settings.COMMIT_WINDOW_HOURS)
        existing = await self._orders.list_by_payment_reference(data.reference, db)

        created: list[Order] = []
        try:
            if existing:
                for order in existing:
                    if order.status != OrderStatus.PENDING_PAYMENT:
                        continue
                    promoted = await self._orders.confirm_payment(order.id, now, deadline, db)
                    if promoted is not None:
                        await self._books.mark_sold(promoted.book.book_id, db)
                        created.append(promoted)
            else:
                buyer_email = data.metadata.buyer_email or (
                    data.customer.email if data.customer else None
                )
                for line_number, item in enumerate(data.metadata.lines()):
                    order = Order(
                        id=new_order_id(),
                        payment_reference=data.reference,
                        line_number=line_number,
                        buyer_id=data.metadata.buyer_id,
                        buyer_email=buyer_email,
                        seller_id=item.seller_id,
                        book=BookSnapshot(
                            book_id=item.book_id,
                            title=item.title,
                            author=item.author,
                            price=item.price,
                        ),
                        gross_amount=item.price,
                        delivery_fee=item.delivery_fee,
                        total_amount=item.price + item.delivery_fee,
                        status=OrderStatus.PAID.value,
                        paid_at=now,
                        commit_deadline=deadline,
                    )
                    if await self._orders.insert_if_absent(order, db):
                        await self._books.mark_sold(item.book_id, db)
                        created.append(order)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        self._check_amount(data.reference, data.amount, existing or created)

        if not created:
            logger.info("charge.success replay: reference=%s", data.reference)
            return WebhookOutcome(
                event=event.event,
                outcome=REPLAYED,
                reference=data.reference,
                order_ids=tuple(o.id for o in existing),
            )

        logger.info(
            "charge.success applied: reference=%s orders=%d", data.reference, len(created)
        )
        for order in created:
            await self._fanout.notify_order(order.seller_id, NotificationType.NEW_ORDER, order)
            await self._fanout.notify_order(
                order.buyer_id, NotificationType.ORDER_CONFIRMED, order
            )
        return WebhookOutcome(
            event=event.event,
            outcome=APPLIED,
            reference=data.reference,
            order_ids=tuple(o.id for o in created),
        )

    @staticmethod
    def _check_amount(reference: str, charged: int, orders: list[Order]) -> None:
        expected = sum(o.total_amount for o in orders)
        if orders and expected != charged:
            logger.warning(
                "charge.success amount mismatch: reference=%s charged=%d orders_total=%d",
                reference, charged, expected,
            )

    # ------------------------------------------------------------------
    # transfer.success / transfer.failed / transfer.reversed
    # ------------------------------------------------------------------

    async def apply_transfer_success(
        self, db: AsyncSession, event: TransferSuccessEvent
    ) -> WebhookOutcome:
        data = event.data
        response = event.model_dump()
        try:
            log = await self._payouts.mark_success_by_reference(
                db, data.reference, data.transfer_code, response
            )
            order = None
            if log is not None:
                order = await self._orders.mark_paid_out(log.order_id, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if log is None:
            return await self._transfer_not_applied(db, event)

        logger.info("Payout completed: order=%s reference=%s", log.order_id, data.reference)
        if order is not None:
            await self._fanout.notify_order(
                order.seller_id, NotificationType.PAYOUT_COMPLETED, order
            )
        return WebhookOutcome(
            event=event.event, outcome=APPLIED, reference=data.reference,
            order_ids=(log.order_id,),
        )

    async def apply_transfer_failed(
        self, db: AsyncSession, event: TransferFailedEvent
    ) -> WebhookOutcome:
        data = event.data
        reason = data.reason or event.event
        try:
            log = await self._payouts.mark_failed_by_reference(
                db, data.reference, reason, event.model_dump()
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if log is None:
            return await self._transfer_not_applied(db, event)

        # The order stays payout_processing until an operator retries.
        logger.error(
            "Payout failed: order=%s reference=%s event=%s",
            log.order_id, data.reference, event.event,
        )
        order = await self._orders.get_by_id(log.order_id, db)
        if order is not None:
            await self._fanout.notify_order(order.seller_id, NotificationType.PAYOUT_FAILED, order)
        return WebhookOutcome(
            event=event.event, outcome=APPLIED, reference=data.reference,
            order_ids=(log.order_id,),
        )

    async def _transfer_not_applied(
        self, db: AsyncSession, event: TransferSuccessEvent | TransferFailedEvent
    ) -> WebhookOutcome:
        existing = await self._payouts.get_by_reference(db, event.data.reference)
        if existing is None:
            logger.warning("Transfer event for unknown reference: %s", event.data.reference)
            return WebhookOutcome(
                event=event.event, outcome=IGNORED, reference=event.data.reference
            )
        if isinstance(event, TransferSuccessEvent) and existing.status == PayoutStatus.FAILED:
            logger.warning(
                "transfer.success for a payout already marked failed: reference=%s",
                event.data.reference,
            )
        else:
            logger.info("%s replay: reference=%s", event.event, event.data.reference)
        return WebhookOutcome(
            event=event.event, outcome=REPLAYED, reference=event.data.reference,
            order_ids=(existing.order_id,),
        )

    # ------------------------------------------------------------------
    # refund.processed
    # ------------------------------------------------------------------

    async def apply_refund_processed(
        self, db: AsyncSession, event: RefundProcessedEvent
    ) -> WebhookOutcome:
        data = event.data
        now = utc_now()
        try:
            orders = await self._orders.mark_refunded(
                data.gateway_refund_id, data.transaction_reference, data.amount, now, db
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if not orders:
            logger.info(
                "refund.processed replay or unmatched: refund=%s reference=%s",
                data.gateway_refund_id, data.transaction_reference,
            )
            return WebhookOutcome(
                event=event.event, outcome=REPLAYED, reference=data.transaction_reference
            )

        for order in orders:
            logger.info("Order refunded: order=%s", order.id)
            await self._fanout.notify_order(
                order.buyer_id, NotificationType.REFUND_PROCESSED, order
            )
        return WebhookOutcome(
            event=event.event, outcome=APPLIED, reference=data.transaction_reference,
            order_ids=tuple(o.id for o in orders),
        )
