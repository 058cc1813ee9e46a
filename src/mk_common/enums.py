"""Global enums: must match DB CHECK constraints exactly.

See alembic/versions/004_create_orders.py and 005_create_payout_logs.py.
"""

from enum import Enum


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    COMMITTED = "committed"
    READY_FOR_COLLECTION = "ready_for_collection"
    COLLECTED = "collected"
    PAYOUT_PROCESSING = "payout_processing"
    PAID_OUT = "paid_out"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class NotificationType(str, Enum):
    NEW_ORDER = "new_order"
    ORDER_CONFIRMED = "order_confirmed"
    SALE_COMMITTED = "sale_committed"
    COMMITMENT_CONFIRMED = "commitment_confirmed"
    ORDER_DECLINED = "order_declined"
    ORDER_EXPIRED = "order_expired"
    ORDER_CANCELLED = "order_cancelled"
    READY_FOR_COLLECTION = "ready_for_collection"
    ORDER_COLLECTED = "order_collected"
    PAYOUT_COMPLETED = "payout_completed"
    PAYOUT_FAILED = "payout_failed"
    REFUND_PROCESSED = "refund_processed"
    COMMIT_REMINDER = "commit_reminder"
    COLLECTION_REMINDER = "collection_reminder"


COURIER_ACTOR = "courier"
