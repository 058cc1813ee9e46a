"""Unit tests for SettlementService with mock repositories."""

from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config.settings import settings
from src.mk_common.enums import NotificationType
from src.mk_common.errors import (
    AlreadyProcessedError,
    CommitWindowExpiredError,
    InvalidStateError,
    OrderNotFoundError,
    UnauthorizedActionError,
)
from src.mk_order.application.schemas import OrderResponse
from src.mk_order.application.service import SettlementService
from src.mk_order.domain.models import BookSnapshot, Order

T0 = datetime(2026, 5, 4, 10, 0, tzinfo=UTC)


def _make_order(**kwargs: Any) -> Order:
    defaults: dict[str, Any] = {
        "id": "ORD_1",
        "payment_reference": "ref-1",
        "line_number": 0,
        "buyer_id": "buyer-1",
        "buyer_email": "buyer@example.com",
        "seller_id": "seller-1",
        "book": BookSnapshot(book_id="book-1", title="Dune", author="Herbert", price=1000),
        "gross_amount": 1000,
        "delivery_fee": 50,
        "total_amount": 1050,
        "status": "paid",
        "paid_at": T0,
        "commit_deadline": T0 + timedelta(hours=48),
    }
    defaults.update(kwargs)
    return Order(**defaults)


def _make_service(**overrides: Any) -> tuple[SettlementService, dict[str, AsyncMock]]:
    mocks = {
        "repo": AsyncMock(),
        "books": AsyncMock(),
        "refunds": AsyncMock(),
        "payouts": AsyncMock(),
        "fanout": AsyncMock(),
    }
    mocks.update(overrides)
    return SettlementService(**mocks), mocks


def _notified(fanout: AsyncMock) -> list[tuple[str, NotificationType]]:
    return [(c.args[0], c.args[1]) for c in fanout.notify_order.call_args_list]


class TestCommit:
    async def test_commit_within_window(self) -> None:
        svc, m = _make_service()
        m["repo"].commit.return_value = _make_order(status="committed", committed_at=T0)
        db = AsyncMock()

        result = await svc.commit(db, "ORD_1", "seller-1")

        assert isinstance(result, OrderResponse)
        assert result.status == "committed"
        db.commit.assert_awaited_once()
        assert _notified(m["fanout"]) == [
            ("buyer-1", NotificationType.SALE_COMMITTED),
            ("seller-1", NotificationType.COMMITMENT_CONFIRMED),
        ]

    async def test_commit_after_deadline_is_expired(self) -> None:
        svc, m = _make_service()
        m["repo"].commit.return_value = None
        m["repo"].get_by_id.return_value = _make_order(
            commit_deadline=datetime(2000, 1, 1, tzinfo=UTC)
        )
        db = AsyncMock()

        with pytest.raises(CommitWindowExpiredError):
            await svc.commit(db, "ORD_1", "seller-1")
        m["fanout"].notify_order.assert_not_awaited()

    async def test_commit_by_other_seller(self) -> None:
        svc, m = _make_service()
        m["repo"].commit.return_value = None
        m["repo"].get_by_id.return_value = _make_order()

        with pytest.raises(UnauthorizedActionError):
            await svc.commit(AsyncMock(), "ORD_1", "seller-2")

    async def test_commit_missing_order(self) -> None:
        svc, m = _make_service()
        m["repo"].commit.return_value = None
        m["repo"].get_by_id.return_value = None

        with pytest.raises(OrderNotFoundError):
            await svc.commit(AsyncMock(), "ORD_9", "seller-1")

    async def test_commit_after_expiry_sweep(self) -> None:
        svc, m = _make_service()
        m["repo"].commit.return_value = None
        m["repo"].get_by_id.return_value = _make_order(status="cancelled")

        with pytest.raises(InvalidStateError):
            await svc.commit(AsyncMock(), "ORD_1", "seller-1")

    async def test_repeated_commit_is_idempotent(self) -> None:
        svc, m = _make_service()
        m["repo"].commit.return_value = None
        m["repo"].get_by_id.return_value = _make_order(status="committed")

        result = await svc.commit(AsyncMock(), "ORD_1", "seller-1")

        assert result.status == "committed"
        m["fanout"].notify_order.assert_not_awaited()

    async def test_rollback_on_db_error(self) -> None:
        svc, m = _make_service()
        m["repo"].commit.side_effect = RuntimeError("connection lost")
        db = AsyncMock()

        with pytest.raises(RuntimeError):
            await svc.commit(db, "ORD_1", "seller-1")
        db.rollback.assert_awaited_once()
        db.commit.assert_not_awaited()


class TestDecline:
    async def test_decline_relists_and_refunds(self) -> None:
        declined = _make_order(status="declined", cancelled_by="seller-1", cancel_reason="damaged")
        refunded = _make_order(status="refund_pending", refund_reference="rf_1")
        svc, m = _make_service()
        m["repo"].decline.return_value = declined
        m["refunds"].request_refund.return_value = refunded
        db = AsyncMock()

        result = await svc.decline(db, "ORD_1", "seller-1", "damaged")

        m["books"].relist.assert_awaited_once_with("book-1", db)
        db.commit.assert_awaited_once()
        m["refunds"].request_refund.assert_awaited_once_with(db, declined)
        assert result.status == "refund_pending"
        assert result.refund_pending is True
        assert _notified(m["fanout"]) == [
            ("buyer-1", NotificationType.ORDER_DECLINED),
            ("seller-1", NotificationType.ORDER_CANCELLED),
        ]

    async def test_decline_survives_refund_failure(self) -> None:
        declined = _make_order(status="declined", cancelled_by="seller-1")
        svc, m = _make_service()
        m["repo"].decline.return_value = declined
        m["refunds"].request_refund.return_value = None

        result = await svc.decline(AsyncMock(), "ORD_1", "seller-1", "out of stock")

        assert result.status == "declined"
        assert m["fanout"].notify_order.await_count == 2

    async def test_decline_after_commit_rejected(self) -> None:
        svc, m = _make_service()
        m["repo"].decline.return_value = None
        m["repo"].get_by_id.return_value = _make_order(status="committed")

        with pytest.raises(InvalidStateError):
            await svc.decline(AsyncMock(), "ORD_1", "seller-1", "changed my mind")
        m["books"].relist.assert_not_awaited()
        m["refunds"].request_refund.assert_not_awaited()

    async def test_repeated_decline_is_idempotent(self) -> None:
        svc, m = _make_service()
        m["repo"].decline.return_value = None
        m["repo"].get_by_id.return_value = _make_order(
            status="refund_pending", cancelled_by="seller-1"
        )

        result = await svc.decline(AsyncMock(), "ORD_1", "seller-1", "damaged")

        assert result.status == "refund_pending"
        m["refunds"].request_refund.assert_not_awaited()


class TestCancel:
    async def test_buyer_cancel_after_commit(self) -> None:
        cancelled = _make_order(status="cancelled", cancelled_by="buyer-1")
        svc, m = _make_service()
        m["repo"].cancel_by_buyer.return_value = cancelled
        m["refunds"].request_refund.return_value = None
        db = AsyncMock()

        result = await svc.cancel(db, "ORD_1", "buyer-1", "found it cheaper")

        assert result.status == "cancelled"
        m["books"].relist.assert_awaited_once_with("book-1", db)
        m["refunds"].request_refund.assert_awaited_once()

    async def test_cancel_after_collection_rejected(self) -> None:
        svc, m = _make_service()
        m["repo"].cancel_by_buyer.return_value = None
        m["repo"].get_by_id.return_value = _make_order(status="collected")

        with pytest.raises(InvalidStateError):
            await svc.cancel(AsyncMock(), "ORD_1", "buyer-1", "too late")

    async def test_seller_cannot_cancel(self) -> None:
        svc, m = _make_service()
        m["repo"].cancel_by_buyer.return_value = None
        m["repo"].get_by_id.return_value = _make_order()

        with pytest.raises(UnauthorizedActionError):
            await svc.cancel(AsyncMock(), "ORD_1", "seller-1", "nope")


class TestMarkReady:
    async def test_ready_notifies_buyer(self) -> None:
        svc, m = _make_service()
        m["repo"].mark_ready.return_value = _make_order(status="ready_for_collection")

        result = await svc.mark_ready(AsyncMock(), "ORD_1", "seller-1")

        assert result.status == "ready_for_collection"
        assert _notified(m["fanout"]) == [("buyer-1", NotificationType.READY_FOR_COLLECTION)]

    async def test_ready_before_commit_rejected(self) -> None:
        svc, m = _make_service()
        m["repo"].mark_ready.return_value = None
        m["repo"].get_by_id.return_value = _make_order(status="paid")

        with pytest.raises(InvalidStateError):
            await svc.mark_ready(AsyncMock(), "ORD_1", "seller-1")


class TestMarkCollected:
    async def test_collection_triggers_payout(self) -> None:
        svc, m = _make_service()
        m["repo"].mark_collected.return_value = _make_order(status="collected")
        m["repo"].get_by_id.return_value = _make_order(status="payout_processing")
        db = AsyncMock()

        with patch.object(settings, "AUTO_PAYOUT_ON_COLLECTION", True):
            result = await svc.mark_collected(db, "ORD_1", "seller-1")

        m["payouts"].initiate_payout.assert_awaited_once_with(db, "ORD_1")
        assert result.status == "payout_processing"
        m["repo"].mark_collected.assert_awaited_once()
        args = m["repo"].mark_collected.call_args[0]
        assert args[1] == "seller-1"

    async def test_payout_failure_does_not_fail_collection(self) -> None:
        svc, m = _make_service()
        m["repo"].mark_collected.return_value = _make_order(status="collected")
        m["payouts"].initiate_payout.side_effect = AlreadyProcessedError("ORD_1")

        with patch.object(settings, "AUTO_PAYOUT_ON_COLLECTION", True):
            result = await svc.mark_collected(AsyncMock(), "ORD_1", "seller-1")

        assert result.status == "collected"

    async def test_unexpected_payout_error_is_contained(self) -> None:
        svc, m = _make_service()
        m["repo"].mark_collected.return_value = _make_order(status="collected")
        m["payouts"].initiate_payout.side_effect = RuntimeError("boom")

        with patch.object(settings, "AUTO_PAYOUT_ON_COLLECTION", True):
            result = await svc.mark_collected(AsyncMock(), "ORD_1", "seller-1")

        assert result.status == "collected"

    async def test_auto_payout_disabled(self) -> None:
        svc, m = _make_service()
        m["repo"].mark_collected.return_value = _make_order(status="collected")

        with patch.object(settings, "AUTO_PAYOUT_ON_COLLECTION", False):
            await svc.mark_collected(AsyncMock(), "ORD_1", "seller-1")

        m["payouts"].initiate_payout.assert_not_awaited()

    async def test_courier_collection_skips_seller_check(self) -> None:
        svc, m = _make_service()
        m["repo"].mark_collected.return_value = _make_order(
            status="collected", collected_by="courier"
        )

        with patch.object(settings, "AUTO_PAYOUT_ON_COLLECTION", False):
            await svc.mark_collected(AsyncMock(), "ORD_1", "courier", via_courier=True)

        args = m["repo"].mark_collected.call_args[0]
        assert args[1] is None
        assert args[2] == "courier"

    async def test_repeated_collection_is_idempotent(self) -> None:
        svc, m = _make_service()
        m["repo"].mark_collected.return_value = None
        m["repo"].get_by_id.return_value = _make_order(status="paid_out")

        result = await svc.mark_collected(AsyncMock(), "ORD_1", "seller-1")

        assert result.status == "paid_out"
        m["payouts"].initiate_payout.assert_not_awaited()
        m["fanout"].notify_order.assert_not_awaited()


class TestQueries:
    async def test_get_order_for_party(self) -> None:
        svc, m = _make_service()
        m["repo"].get_by_id.return_value = _make_order()

        result = await svc.get_order(MagicMock(), "ORD_1", "buyer-1")

        assert result.id == "ORD_1"
        assert result.total_amount_display == "R10.50"

    async def test_get_order_for_stranger(self) -> None:
        svc, m = _make_service()
        m["repo"].get_by_id.return_value = _make_order()

        with pytest.raises(UnauthorizedActionError):
            await svc.get_order(MagicMock(), "ORD_1", "someone-else")

    async def test_list_orders_paginates(self) -> None:
        svc, m = _make_service()
        m["repo"].list_by_user.return_value = [
            _make_order(id="ORD_3"), _make_order(id="ORD_2"), _make_order(id="ORD_1"),
        ]

        result = await svc.list_orders(MagicMock(), "seller-1", "seller", None, 2, None)

        assert [o.id for o in result.items] == ["ORD_3", "ORD_2"]
        assert result.has_more is True
        assert result.next_cursor == "ORD_2"
        assert m["repo"].list_by_user.call_args.kwargs["limit"] == 3

    async def test_list_orders_last_page(self) -> None:
        svc, m = _make_service()
        m["repo"].list_by_user.return_value = [_make_order(id="ORD_1")]

        result = await svc.list_orders(MagicMock(), "buyer-1", "buyer", "paid", 20, "ORD_5")

        assert result.has_more is False
        assert result.next_cursor is None
        assert m["repo"].list_by_user.call_args.kwargs["statuses"] == ["paid"]
