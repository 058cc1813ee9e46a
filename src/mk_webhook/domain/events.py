"""Gateway webhook payloads as a tagged union.

Known events are validated into typed models (discriminated by ``event``);
anything else becomes UnknownEvent and is acknowledged without effect.
Validation happens once, here; the reconciler never touches raw dicts.
"""
import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from src.mk_common.errors import MalformedWebhookError


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class CartItem(_Payload):
    book_id: str
    seller_id: str
    title: str
    author: str | None = None
    price: int = Field(..., ge=0)
    delivery_fee: int = Field(0, ge=0)


class ChargeMetadata(_Payload):
    buyer_id: str
    buyer_email: str | None = None
    cart_items: list[CartItem] = Field(default_factory=list)
    # Single-book checkout
    book_id: str | None = None
    seller_id: str | None = None
    book_title: str | None = None
    book_author: str | None = None
    book_price: int | None = Field(None, ge=0)
    delivery_fee: int = Field(0, ge=0)

    def lines(self) -> list[CartItem]:
        """One CartItem per order line; a single-book checkout is one line."""
        if self.cart_items:
            return list(self.cart_items)
        if not (self.book_id and self.seller_id and self.book_price is not None):
            raise ValueError("metadata has neither cart_items nor book_id/seller_id/book_price")
        return [
            CartItem(
                book_id=self.book_id,
                seller_id=self.seller_id,
                title=self.book_title or "Book",
                author=self.book_author,
                price=self.book_price,
                delivery_fee=self.delivery_fee,
            )
        ]


class Customer(_Payload):
    email: str | None = None


class ChargeData(_Payload):
    reference: str
    amount: int = Field(..., ge=0)
    currency: str = "ZAR"
    customer: Customer | None = None
    metadata: ChargeMetadata

    @field_validator("metadata", mode="before")
    @classmethod
    def decode_metadata(cls, v: Any) -> Any:
        # Paystack echoes metadata back as a JSON string for some integrations.
        if isinstance(v, str):
            return json.loads(v)
        return v


class TransferData(_Payload):
    reference: str
    transfer_code: str | None = None
    amount: int | None = None
    reason: str | None = None
    status: str | None = None


class RefundData(_Payload):
    id: str | None = None
    refund_reference: str | None = None
    transaction_reference: str | None = None
    amount: int = Field(..., ge=0)
    status: str | None = None

    @property
    def gateway_refund_id(self) -> str | None:
        return self.id or self.refund_reference


class ChargeSuccessEvent(_Payload):
    event: Literal["charge.success"]
    data: ChargeData


class TransferSuccessEvent(_Payload):
    event: Literal["transfer.success"]
    data: TransferData


class TransferFailedEvent(_Payload):
    event: Literal["transfer.failed", "transfer.reversed"]
    data: TransferData


class RefundProcessedEvent(_Payload):
    event: Literal["refund.processed"]
    data: RefundData


class UnknownEvent(_Payload):
    event: str
    data: dict[str, Any] = Field(default_factory=dict)


KnownEvent = Annotated[
    Union[ChargeSuccessEvent, TransferSuccessEvent, TransferFailedEvent, RefundProcessedEvent],
    Field(discriminator="event"),
]
WebhookEvent = Union[
    ChargeSuccessEvent, TransferSuccessEvent, TransferFailedEvent, RefundProcessedEvent,
    UnknownEvent,
]

_KNOWN_EVENTS = frozenset(
    {"charge.success", "transfer.success", "transfer.failed", "transfer.reversed",
     "refund.processed"}
)
_known_adapter: TypeAdapter[Any] = TypeAdapter(KnownEvent)


def parse_event(payload: Any) -> WebhookEvent:
    """Validate a decoded webhook body.

    Raises:
        MalformedWebhookError: not an object, no event name, or a known event
            whose data does not validate.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("event"), str):
        raise MalformedWebhookError("missing event name")
    if payload["event"] not in _KNOWN_EVENTS:
        data = payload.get("data")
        return UnknownEvent(event=payload["event"], data=data if isinstance(data, dict) else {})
    try:
        event: WebhookEvent = _known_adapter.validate_python(payload)
    except ValidationError as exc:
        raise MalformedWebhookError(
            f"{payload['event']}: {exc.error_count()} invalid field(s)"
        ) from None
    if isinstance(event, ChargeSuccessEvent):
        try:
            event.data.metadata.lines()
        except ValueError as exc:
            raise MalformedWebhookError(str(exc)) from exc
    return event
