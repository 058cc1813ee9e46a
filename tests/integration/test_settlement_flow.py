# tests/integration/test_settlement_flow.py
"""Integration tests for the settlement flow against a real database.

charge.success webhook → paid orders → commit / decline → ready → collected,
plus webhook replay idempotency and the races between seller commit and
expiry and between two payout attempts. Refund calls point at an unreachable
host so refunds are recorded as attempted-but-failed; payouts go to a stub
gateway and are never sent.

Each test uses its own payment reference and user ids to avoid state pollution.
"""

import asyncio
import json
import uuid
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import patch

import pytest
from httpx import AsyncClient
from sqlalchemy import text

from config.settings import settings
from src.mk_common.database import session_scope
from src.mk_common.errors import AlreadyProcessedError, AppError, CommitWindowExpiredError
from src.mk_gateway.auth.jwt_handler import create_access_token
from src.mk_order.api import router as order_router
from src.mk_order.application.service import SettlementService
from src.mk_order.domain.models import Order
from src.mk_order.infrastructure.persistence import OrderRepository
from src.mk_payout.application.service import PayoutService, RefundService
from src.mk_payout.infrastructure.paystack_client import PaystackClient, TransferResult
from src.mk_payout.infrastructure.persistence import PayoutLogRepository
from src.mk_scheduler.application.service import CommitmentClock
from src.mk_webhook.domain.signature import SIGNATURE_HEADER, compute_signature

pytestmark = pytest.mark.asyncio(loop_scope="session")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _auth(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


def _charge(reference: str, buyer_id: str, sellers: list[str]) -> dict[str, object]:
    items = [
        {"book_id": f"book-{uuid.uuid4().hex[:8]}", "seller_id": seller, "title": f"Book {i}",
         "price": 1000, "delivery_fee": 50}
        for i, seller in enumerate(sellers)
    ]
    return {
        "event": "charge.success",
        "data": {
            "reference": reference,
            "amount": 1050 * len(sellers),
            "customer": {"email": "buyer@example.com"},
            "metadata": {"buyer_id": buyer_id, "cart_items": items},
        },
    }


async def _deliver(client: AsyncClient, payload: dict[str, object]) -> dict[str, object]:
    raw = json.dumps(payload).encode()
    resp = await client.post(
        "/api/v1/webhooks/paystack",
        content=raw,
        headers={SIGNATURE_HEADER: compute_signature(raw, settings.PAYSTACK_SECRET_KEY)},
    )
    assert resp.status_code == 200, resp.text
    return dict(resp.json())


def _ids() -> tuple[str, str, str]:
    uid = uuid.uuid4().hex[:8]
    return f"ref_{uid}", f"buyer_{uid}", f"seller_{uid}"


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestChargeWebhook:
    async def test_cart_creates_paid_orders_once(self, client: AsyncClient) -> None:
        reference, buyer, seller = _ids()
        payload = _charge(reference, buyer, [seller, f"{seller}_b"])

        first = await _deliver(client, payload)
        replay = await _deliver(client, payload)

        assert first["message"] == "applied"
        assert len(first["data"]["order_ids"]) == 2
        assert replay["message"] == "replayed"
        assert sorted(replay["data"]["order_ids"]) == sorted(first["data"]["order_ids"])

        resp = await client.get("/api/v1/orders?role=buyer", headers=_auth(buyer))
        items = resp.json()["data"]["items"]
        assert len(items) == 2
        assert all(o["status"] == "paid" for o in items)
        assert all(o["commit_deadline"] is not None for o in items)

    async def test_unsigned_delivery_rejected(self, client: AsyncClient) -> None:
        reference, buyer, seller = _ids()
        resp = await client.post(
            "/api/v1/webhooks/paystack", content=json.dumps(_charge(reference, buyer, [seller]))
        )
        assert resp.status_code == 401


class TestSellerFlow:
    async def test_commit_ready_collect(self, client: AsyncClient) -> None:
        reference, buyer, seller = _ids()
        delivered = await _deliver(client, _charge(reference, buyer, [seller]))
        order_id = delivered["data"]["order_ids"][0]

        resp = await client.post(f"/api/v1/orders/{order_id}/commit", headers=_auth(buyer))
        assert resp.status_code == 403

        resp = await client.post(f"/api/v1/orders/{order_id}/commit", headers=_auth(seller))
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "committed"

        again = await client.post(f"/api/v1/orders/{order_id}/commit", headers=_auth(seller))
        assert again.status_code == 200

        resp = await client.post(f"/api/v1/orders/{order_id}/decline",
                                 json={"reason": "too late"}, headers=_auth(seller))
        assert resp.status_code == 409

        resp = await client.post(f"/api/v1/orders/{order_id}/ready", headers=_auth(seller))
        assert resp.json()["data"]["status"] == "ready_for_collection"

        with patch.object(settings, "AUTO_PAYOUT_ON_COLLECTION", False):
            resp = await client.post(
                f"/api/v1/internal/orders/{order_id}/collected",
                json={"collected_by": "courier"},
                headers={"X-Service-Token": settings.SERVICE_TOKEN},
            )
        assert resp.json()["data"]["status"] == "collected"

        resp = await client.post(f"/api/v1/orders/{order_id}/cancel", json={},
                                 headers=_auth(buyer))
        assert resp.status_code == 409

    async def test_decline_records_refund_attempt(self, client: AsyncClient) -> None:
        reference, buyer, seller = _ids()
        delivered = await _deliver(client, _charge(reference, buyer, [seller]))
        order_id = delivered["data"]["order_ids"][0]

        gateway = order_router._service._refunds._gateway
        with patch.object(gateway, "base_url", "http://127.0.0.1:9"):
            resp = await client.post(f"/api/v1/orders/{order_id}/decline",
                                     json={"reason": "damaged"}, headers=_auth(seller))

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["status"] == "refund_pending"
        assert data["cancel_reason"] == "damaged"

    async def test_manual_expiry_check_leaves_open_order(self, client: AsyncClient) -> None:
        reference, buyer, seller = _ids()
        delivered = await _deliver(client, _charge(reference, buyer, [seller]))
        order_id = delivered["data"]["order_ids"][0]

        resp = await client.post("/api/v1/orders/expiry-check", json={"order_id": order_id},
                                 headers=_auth(buyer))

        assert resp.status_code == 200
        assert resp.json()["data"]["expired_order_ids"] == []
        assert resp.json()["data"]["order_status"] == "paid"


# ---------------------------------------------------------------------------
# Races between independent actors, each on its own session
# ---------------------------------------------------------------------------

_UNREACHABLE = "http://127.0.0.1:9"


class _AcceptingTransfers:
    """Gateway double that accepts every transfer after yielding once."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def transfer(self, **kwargs: Any) -> TransferResult:
        self.calls.append(kwargs["reference"])
        await asyncio.sleep(0)
        return TransferResult(transfer_code=f"TRF_{len(self.calls)}", status="pending", raw={})


def _clock() -> CommitmentClock:
    return CommitmentClock(refunds=RefundService(gateway=PaystackClient(base_url=_UNREACHABLE)))


async def _paid_order(client: AsyncClient) -> tuple[Order, str]:
    reference, buyer, seller = _ids()
    delivered = await _deliver(client, _charge(reference, buyer, [seller]))
    order_id = delivered["data"]["order_ids"][0]
    async with session_scope() as db:
        order = await OrderRepository().get_by_id(order_id, db)
    assert order is not None and order.commit_deadline is not None
    return order, seller


async def _commit_at(order_id: str, seller_id: str, when: datetime) -> str:
    """Seller commit with the application clock pinned to ``when``."""
    with patch("src.mk_order.application.service.utc_now", return_value=when):
        async with session_scope() as db:
            response = await SettlementService().commit(db, order_id, seller_id)
    return response.status


async def _expire_at(order_id: str, when: datetime) -> bool:
    async with session_scope() as db:
        return await _clock().expire_order(db, order_id, when)


async def _status(order_id: str) -> str:
    async with session_scope() as db:
        order = await OrderRepository().get_by_id(order_id, db)
    assert order is not None
    return order.status


class TestCommitExpiryRace:
    async def test_expiry_wins_at_the_exact_deadline(self, client: AsyncClient) -> None:
        order, seller = await _paid_order(client)
        deadline = order.commit_deadline
        assert deadline is not None

        committed, expired = await asyncio.gather(
            _commit_at(order.id, seller, deadline),
            _expire_at(order.id, deadline),
            return_exceptions=True,
        )

        assert expired is True
        assert isinstance(committed, AppError)
        assert committed.code in (2004, 2003)
        assert await _status(order.id) in ("cancelled", "refund_pending")

    async def test_exactly_one_wins_across_the_deadline(self, client: AsyncClient) -> None:
        order, seller = await _paid_order(client)
        deadline = order.commit_deadline
        assert deadline is not None
        just_before = deadline - timedelta(milliseconds=1)

        committed, expired = await asyncio.gather(
            _commit_at(order.id, seller, just_before),
            _expire_at(order.id, deadline),
            return_exceptions=True,
        )

        commit_won = committed == "committed"
        assert commit_won != (expired is True)
        final = await _status(order.id)
        if commit_won:
            assert final == "committed"
        else:
            assert isinstance(committed, AppError)
            assert final in ("cancelled", "refund_pending")

    async def test_late_commit_rejected_then_swept(self, client: AsyncClient) -> None:
        order, seller = await _paid_order(client)
        deadline = order.commit_deadline
        assert deadline is not None
        late = deadline + timedelta(minutes=1)

        with pytest.raises(CommitWindowExpiredError) as exc_info:
            await _commit_at(order.id, seller, late)
        assert exc_info.value.code == 2004
        assert await _status(order.id) == "paid"

        async with session_scope() as db:
            result = await _clock().run_expiry_sweep(db, late)
            expired = await OrderRepository().get_by_id(order.id, db)

        assert result.expired >= 1
        assert expired is not None
        assert expired.status in ("cancelled", "refund_pending")
        assert expired.cancel_reason == "commit_window_expired"
        assert expired.cancelled_by == "system"


class TestConcurrentPayout:
    async def test_one_claim_one_already_processed(self, client: AsyncClient) -> None:
        reference, buyer, seller = _ids()
        delivered = await _deliver(client, _charge(reference, buyer, [seller]))
        order_id = delivered["data"]["order_ids"][0]
        async with session_scope() as db:
            await db.execute(
                text("INSERT INTO banking_subaccounts (user_id, recipient_code) "
                     "VALUES (:user_id, :code)"),
                {"user_id": seller, "code": f"RCP_{seller}"},
            )
            await db.commit()

        await client.post(f"/api/v1/orders/{order_id}/commit", headers=_auth(seller))
        await client.post(f"/api/v1/orders/{order_id}/ready", headers=_auth(seller))
        with patch.object(settings, "AUTO_PAYOUT_ON_COLLECTION", False):
            resp = await client.post(
                f"/api/v1/internal/orders/{order_id}/collected",
                json={"collected_by": "courier"},
                headers={"X-Service-Token": settings.SERVICE_TOKEN},
            )
        assert resp.json()["data"]["status"] == "collected"

        gateway = _AcceptingTransfers()

        async def pay() -> str:
            async with session_scope() as db:
                service = PayoutService(gateway=gateway)  # type: ignore[arg-type]
                return (await service.initiate_payout(db, order_id)).status

        first, second = await asyncio.gather(pay(), pay(), return_exceptions=True)

        outcomes = [first, second]
        assert sum(1 for o in outcomes if isinstance(o, AlreadyProcessedError)) == 1
        assert sum(1 for o in outcomes if o == "processing") == 1
        assert len(gateway.calls) == 1

        async with session_scope() as db:
            logs = await PayoutLogRepository().list_for_order(db, order_id)
        assert [log.status for log in logs] == ["processing"]
        assert await _status(order_id) == "payout_processing"
