"""Order domain model: pure dataclass, no SQLAlchemy dependency."""
from dataclasses import dataclass
from datetime import datetime

from src.mk_common.enums import OrderStatus


@dataclass
class BookSnapshot:
    """Denormalized catalog item at time of sale."""

    book_id: str
    title: str
    author: str | None
    price: int  # cents


@dataclass
class Order:
    id: str
    payment_reference: str
    line_number: int  # 0 for single purchases, cart index otherwise
    buyer_id: str
    buyer_email: str | None
    seller_id: str
    book: BookSnapshot
    # Money (cents)
    gross_amount: int
    delivery_fee: int
    total_amount: int
    seller_amount: int | None = None  # set at payout preparation
    platform_fee: int | None = None
    # Control
    status: str = OrderStatus.PENDING_PAYMENT.value
    paid_at: datetime | None = None
    commit_deadline: datetime | None = None
    committed_at: datetime | None = None
    ready_at: datetime | None = None
    collected_at: datetime | None = None
    collected_by: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    cancel_reason: str | None = None
    # Refund tracking
    refund_reference: str | None = None
    refund_requested_at: datetime | None = None
    refund_error: str | None = None
    refunded_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def payment_captured(self) -> bool:
        return self.paid_at is not None

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)
