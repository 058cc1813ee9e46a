# src/mk_order/application/schemas.py
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from src.mk_common.cents import cents_to_display
from src.mk_order.domain.models import Order


class DeclineOrderRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("reason must not be blank")
        return v.strip()


class CancelOrderRequest(BaseModel):
    reason: str = Field("Cancelled by buyer", min_length=1, max_length=500)


class MarkCollectedRequest(BaseModel):
    notes: str | None = Field(None, max_length=500)


class CourierCollectedRequest(BaseModel):
    collected_by: str = Field("courier", min_length=1, max_length=64)
    tracking_reference: str | None = Field(None, max_length=128)


class BookResponse(BaseModel):
    book_id: str
    title: str
    author: str | None
    price_cents: int


class OrderResponse(BaseModel):
    id: str
    payment_reference: str
    line_number: int
    buyer_id: str
    seller_id: str
    book: BookResponse
    status: str
    gross_amount_cents: int
    gross_amount_display: str
    delivery_fee_cents: int
    total_amount_cents: int
    total_amount_display: str
    seller_amount_cents: int | None = None
    platform_fee_cents: int | None = None
    paid_at: datetime | None = None
    commit_deadline: datetime | None = None
    committed_at: datetime | None = None
    ready_at: datetime | None = None
    collected_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    refunded_at: datetime | None = None
    refund_pending: bool = False

    @classmethod
    def from_domain(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            payment_reference=order.payment_reference,
            line_number=order.line_number,
            buyer_id=order.buyer_id,
            seller_id=order.seller_id,
            book=BookResponse(
                book_id=order.book.book_id,
                title=order.book.title,
                author=order.book.author,
                price_cents=order.book.price,
            ),
            status=order.status,
            gross_amount_cents=order.gross_amount,
            gross_amount_display=cents_to_display(order.gross_amount),
            delivery_fee_cents=order.delivery_fee,
            total_amount_cents=order.total_amount,
            total_amount_display=cents_to_display(order.total_amount),
            seller_amount_cents=order.seller_amount,
            platform_fee_cents=order.platform_fee,
            paid_at=order.paid_at,
            commit_deadline=order.commit_deadline,
            committed_at=order.committed_at,
            ready_at=order.ready_at,
            collected_at=order.collected_at,
            cancelled_at=order.cancelled_at,
            cancel_reason=order.cancel_reason,
            refunded_at=order.refunded_at,
            refund_pending=order.status == "refund_pending",
        )


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    next_cursor: str | None
    has_more: bool


Role = Literal["buyer", "seller"]
