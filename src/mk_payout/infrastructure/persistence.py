"""Payout log and banking subaccount persistence: raw SQL.

The active-payout partial unique index (order_id WHERE status IN
('pending','processing','success')) is the claim: the INSERT below either
creates the only active row for the order or returns nothing.
"""
import json
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.mk_payout.domain.models import BankingSubaccount, PayoutLog

# payout_logs.failure_reason is VARCHAR(500)
_FAILURE_REASON_MAX = 500

_PAYOUT_COLUMNS = """
    id, order_id, seller_id, amount, platform_fee, recipient_code, reference,
    transfer_code, status, gateway_response, failure_reason, created_at, updated_at
"""

_CLAIM_PAYOUT_SQL = text(f"""
    INSERT INTO payout_logs
        (order_id, seller_id, amount, platform_fee, recipient_code, reference, status)
    SELECT o.id, o.seller_id, :amount, :platform_fee, :recipient_code, :reference, 'pending'
    FROM orders o
    WHERE o.id = :order_id
      AND o.status = ANY(string_to_array(CAST(:order_statuses AS TEXT), ','))
    ON CONFLICT (order_id) WHERE status IN ('pending', 'processing', 'success')
    DO NOTHING
    RETURNING {_PAYOUT_COLUMNS}
""")

_MARK_PROCESSING_SQL = text(f"""
    UPDATE payout_logs
    SET status = 'processing', transfer_code = :transfer_code,
        gateway_response = CAST(:gateway_response AS JSONB)
    WHERE id = :id AND status = 'pending'
    RETURNING {_PAYOUT_COLUMNS}
""")

_MARK_FAILED_BY_ID_SQL = text(f"""
    UPDATE payout_logs
    SET status = 'failed', failure_reason = :failure_reason,
        gateway_response = CAST(:gateway_response AS JSONB)
    WHERE id = :id AND status IN ('pending', 'processing')
    RETURNING {_PAYOUT_COLUMNS}
""")

_MARK_SUCCESS_BY_REFERENCE_SQL = text(f"""
    UPDATE payout_logs
    SET status = 'success', gateway_response = CAST(:gateway_response AS JSONB),
        transfer_code = COALESCE(transfer_code, CAST(:transfer_code AS TEXT))
    WHERE reference = :reference AND status IN ('pending', 'processing')
    RETURNING {_PAYOUT_COLUMNS}
""")

_MARK_FAILED_BY_REFERENCE_SQL = text(f"""
    UPDATE payout_logs
    SET status = 'failed', failure_reason = :failure_reason,
        gateway_response = CAST(:gateway_response AS JSONB)
    WHERE reference = :reference AND status IN ('pending', 'processing')
    RETURNING {_PAYOUT_COLUMNS}
""")

_GET_BY_REFERENCE_SQL = text(f"""
    SELECT {_PAYOUT_COLUMNS}
    FROM payout_logs WHERE reference = :reference
""")

_GET_ACTIVE_FOR_ORDER_SQL = text(f"""
    SELECT {_PAYOUT_COLUMNS}
    FROM payout_logs
    WHERE order_id = :order_id AND status IN ('pending', 'processing', 'success')
""")

_LIST_FOR_ORDER_SQL = text(f"""
    SELECT {_PAYOUT_COLUMNS}
    FROM payout_logs
    WHERE order_id = :order_id
    ORDER BY id DESC
""")

_GET_SUBACCOUNT_SQL = text("""
    SELECT user_id, recipient_code, subaccount_code, bank_name, account_last4
    FROM banking_subaccounts
    WHERE user_id = :user_id
""")


def _load_json(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _row_to_payout(row: Any) -> PayoutLog:
    return PayoutLog(
        id=row.id,
        order_id=row.order_id,
        seller_id=row.seller_id,
        amount=row.amount,
        platform_fee=row.platform_fee,
        recipient_code=row.recipient_code,
        reference=row.reference,
        transfer_code=row.transfer_code,
        status=row.status,
        gateway_response=_load_json(row.gateway_response),
        failure_reason=row.failure_reason,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class PayoutLogRepository:
    async def claim(
        self,
        db: AsyncSession,
        order_id: str,
        amount: int,
        platform_fee: int,
        recipient_code: str,
        reference: str,
        order_statuses: tuple[str, ...],
    ) -> PayoutLog | None:
        """Insert the pending log if the order is in ``order_statuses`` and has no active log."""
        result = await db.execute(
            _CLAIM_PAYOUT_SQL,
            {
                "order_id": order_id,
                "amount": amount,
                "platform_fee": platform_fee,
                "recipient_code": recipient_code,
                "reference": reference,
                "order_statuses": ",".join(order_statuses),
            },
        )
        row = result.fetchone()
        return _row_to_payout(row) if row else None

    async def mark_processing(
        self, db: AsyncSession, payout_id: int, transfer_code: str | None,
        gateway_response: dict[str, Any],
    ) -> PayoutLog | None:
        result = await db.execute(
            _MARK_PROCESSING_SQL,
            {
                "id": payout_id,
                "transfer_code": transfer_code,
                "gateway_response": json.dumps(gateway_response),
            },
        )
        row = result.fetchone()
        return _row_to_payout(row) if row else None

    async def mark_failed(
        self, db: AsyncSession, payout_id: int, failure_reason: str,
        gateway_response: dict[str, Any],
    ) -> PayoutLog | None:
        result = await db.execute(
            _MARK_FAILED_BY_ID_SQL,
            {
                "id": payout_id,
                "failure_reason": failure_reason[:_FAILURE_REASON_MAX],
                "gateway_response": json.dumps(gateway_response, default=str),
            },
        )
        row = result.fetchone()
        return _row_to_payout(row) if row else None

    async def mark_success_by_reference(
        self, db: AsyncSession, reference: str, transfer_code: str | None,
        gateway_response: dict[str, Any],
    ) -> PayoutLog | None:
        result = await db.execute(
            _MARK_SUCCESS_BY_REFERENCE_SQL,
            {
                "reference": reference,
                "transfer_code": transfer_code,
                "gateway_response": json.dumps(gateway_response),
            },
        )
        row = result.fetchone()
        return _row_to_payout(row) if row else None

    async def mark_failed_by_reference(
        self, db: AsyncSession, reference: str, failure_reason: str,
        gateway_response: dict[str, Any],
    ) -> PayoutLog | None:
        result = await db.execute(
            _MARK_FAILED_BY_REFERENCE_SQL,
            {
                "reference": reference,
                "failure_reason": failure_reason[:_FAILURE_REASON_MAX],
                "gateway_response": json.dumps(gateway_response, default=str),
            },
        )
        row = result.fetchone()
        return _row_to_payout(row) if row else None

    async def get_by_reference(self, db: AsyncSession, reference: str) -> PayoutLog | None:
        result = await db.execute(_GET_BY_REFERENCE_SQL, {"reference": reference})
        row = result.fetchone()
        return _row_to_payout(row) if row else None

    async def get_active_for_order(self, db: AsyncSession, order_id: str) -> PayoutLog | None:
        result = await db.execute(_GET_ACTIVE_FOR_ORDER_SQL, {"order_id": order_id})
        row = result.fetchone()
        return _row_to_payout(row) if row else None

    async def list_for_order(self, db: AsyncSession, order_id: str) -> list[PayoutLog]:
        result = await db.execute(_LIST_FOR_ORDER_SQL, {"order_id": order_id})
        return [_row_to_payout(r) for r in result.fetchall()]


class BankingSubaccountRepository:
    async def get_for_user(self, db: AsyncSession, user_id: str) -> BankingSubaccount | None:
        result = await db.execute(_GET_SUBACCOUNT_SQL, {"user_id": user_id})
        row = result.fetchone()
        if row is None:
            return None
        return BankingSubaccount(
            user_id=row.user_id,
            recipient_code=row.recipient_code,
            subaccount_code=row.subaccount_code,
            bank_name=row.bank_name,
            account_last4=row.account_last4,
        )
