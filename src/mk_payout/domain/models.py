"""Payout domain models: pure dataclasses."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.mk_common.enums import PayoutStatus

ACTIVE_PAYOUT_STATUSES = frozenset(
    {PayoutStatus.PENDING, PayoutStatus.PROCESSING, PayoutStatus.SUCCESS}
)


@dataclass
class PayoutLog:
    id: int | None
    order_id: str
    seller_id: str
    amount: int  # seller share, cents
    platform_fee: int
    recipient_code: str
    reference: str  # our transfer reference, unique
    status: str = PayoutStatus.PENDING.value
    transfer_code: str | None = None
    gateway_response: dict[str, Any] = field(default_factory=dict)
    failure_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_PAYOUT_STATUSES


@dataclass
class BankingSubaccount:
    user_id: str
    recipient_code: str | None
    subaccount_code: str | None
    bank_name: str | None = None
    account_last4: str | None = None

    @property
    def can_receive_transfers(self) -> bool:
        return bool(self.recipient_code)
