"""Pydantic schemas for payout endpoints."""
from datetime import datetime

from pydantic import BaseModel

from src.mk_common.cents import cents_to_display
from src.mk_payout.domain.models import PayoutLog


class PayoutResponse(BaseModel):
    payout_id: int | None
    order_id: str
    reference: str
    status: str
    amount_cents: int
    amount_display: str
    platform_fee_cents: int
    transfer_code: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_domain(cls, log: PayoutLog) -> "PayoutResponse":
        return cls(
            payout_id=log.id,
            order_id=log.order_id,
            reference=log.reference,
            status=log.status,
            amount_cents=log.amount,
            amount_display=cents_to_display(log.amount),
            platform_fee_cents=log.platform_fee,
            transfer_code=log.transfer_code,
            created_at=log.created_at,
        )


class PayoutListResponse(BaseModel):
    order_id: str
    items: list[PayoutResponse]
