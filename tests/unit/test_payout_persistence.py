"""Unit tests for payout log, banking and book availability repositories."""

import json
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from src.mk_catalog.infrastructure.persistence import BookAvailabilityRepository
from src.mk_payout.infrastructure import persistence
from src.mk_payout.infrastructure.persistence import (
    BankingSubaccountRepository,
    PayoutLogRepository,
)

NOW = datetime(2026, 5, 4, 10, 0, tzinfo=UTC)


def _make_row(**kwargs: Any) -> MagicMock:
    row = MagicMock()
    row.id = kwargs.get("id", 7)
    row.order_id = kwargs.get("order_id", "ORD_1")
    row.seller_id = kwargs.get("seller_id", "seller-1")
    row.amount = kwargs.get("amount", 900)
    row.platform_fee = kwargs.get("platform_fee", 100)
    row.recipient_code = kwargs.get("recipient_code", "RCP_abc")
    row.reference = kwargs.get("reference", "PAYOUT_ORD_1_1")
    row.transfer_code = kwargs.get("transfer_code")
    row.status = kwargs.get("status", "pending")
    row.gateway_response = kwargs.get("gateway_response")
    row.failure_reason = kwargs.get("failure_reason")
    row.created_at = kwargs.get("created_at", NOW)
    row.updated_at = kwargs.get("updated_at", NOW)
    return row


def _db_returning(row: Any = None, rowcount: int = 0) -> AsyncMock:
    db = AsyncMock()
    result = MagicMock()
    result.fetchone.return_value = row
    result.rowcount = rowcount
    db.execute.return_value = result
    return db


class TestPayoutLogRepository:
    async def test_claim_passes_status_list(self) -> None:
        db = _db_returning(_make_row())
        log = await PayoutLogRepository().claim(
            db, "ORD_1", 900, 100, "RCP_abc", "PAYOUT_ORD_1_1",
            ("collected", "payout_processing"),
        )

        assert log is not None and log.status == "pending"
        stmt, params = db.execute.call_args[0]
        assert stmt is persistence._CLAIM_PAYOUT_SQL
        assert params["order_statuses"] == "collected,payout_processing"

    async def test_claim_lost(self) -> None:
        db = _db_returning(None)
        log = await PayoutLogRepository().claim(
            db, "ORD_1", 900, 100, "RCP_abc", "PAYOUT_ORD_1_2", ("collected",)
        )
        assert log is None

    def test_claim_conflicts_on_active_index(self) -> None:
        sql = " ".join(str(persistence._CLAIM_PAYOUT_SQL).split())
        assert "ON CONFLICT (order_id) WHERE status IN ('pending', 'processing', 'success')" in sql

    async def test_gateway_response_stored_as_json(self) -> None:
        db = _db_returning(_make_row(status="failed"))
        await PayoutLogRepository().mark_failed(db, 7, "declined", {"status": False})
        params = db.execute.call_args[0][1]
        assert json.loads(params["gateway_response"]) == {"status": False}

    async def test_failure_reason_fits_column(self) -> None:
        db = _db_returning(_make_row(status="failed"))
        await PayoutLogRepository().mark_failed(db, 7, "x" * 2000, {})
        params = db.execute.call_args[0][1]
        assert len(params["failure_reason"]) == 500

    async def test_gateway_response_loaded_from_string(self) -> None:
        db = _db_returning(_make_row(gateway_response='{"data": {"id": 1}}'))
        log = await PayoutLogRepository().get_by_reference(db, "PAYOUT_ORD_1_1")
        assert log is not None
        assert log.gateway_response == {"data": {"id": 1}}

    async def test_gateway_response_null(self) -> None:
        db = _db_returning(_make_row(gateway_response=None))
        log = await PayoutLogRepository().get_by_reference(db, "PAYOUT_ORD_1_1")
        assert log is not None
        assert log.gateway_response == {}
        assert log.is_active is True


class TestBankingSubaccountRepository:
    async def test_found(self) -> None:
        row = MagicMock(
            user_id="seller-1", recipient_code="RCP_abc", subaccount_code="ACCT_1",
            bank_name="FNB", account_last4="1234",
        )
        account = await BankingSubaccountRepository().get_for_user(_db_returning(row), "seller-1")
        assert account is not None
        assert account.can_receive_transfers is True

    async def test_missing(self) -> None:
        account = await BankingSubaccountRepository().get_for_user(_db_returning(None), "s")
        assert account is None


class TestBookAvailabilityRepository:
    async def test_relist_changed(self) -> None:
        assert await BookAvailabilityRepository().relist("book-1", _db_returning(rowcount=1))

    async def test_relist_twice_is_harmless(self) -> None:
        assert not await BookAvailabilityRepository().relist("book-1", _db_returning(rowcount=0))

    async def test_mark_sold(self) -> None:
        db = _db_returning(rowcount=1)
        assert await BookAvailabilityRepository().mark_sold("book-1", db)
        assert db.execute.call_args[0][1] == {"book_id": "book-1"}
