"""Job and expiry-check request/response schemas."""
from pydantic import BaseModel


class ExpiryCheckRequest(BaseModel):
    order_id: str | None = None


class ExpiryCheckResponse(BaseModel):
    checked: int
    expired_order_ids: list[str]
    order_status: str | None = None  # set when a single order was checked


class SweepResult(BaseModel):
    scanned: int = 0
    expired: int = 0
    skipped: int = 0
    failed: int = 0


class ReminderResult(BaseModel):
    candidates: int = 0
    sent: int = 0


class RefundRetryResult(BaseModel):
    candidates: int = 0
    accepted: int = 0
    still_pending: int = 0
