"""Notification copy per NotificationType.

Amounts are rendered with cents_to_display ("R1,050.00"). Templates take the
order snapshot plus a few keyword extras (deadline, reason, hours_left).
"""
from datetime import datetime
from typing import Any

from src.mk_common.cents import cents_to_display
from src.mk_common.enums import NotificationType as N
from src.mk_order.domain.models import Order


def _fmt_deadline(deadline: datetime | None) -> str:
    if deadline is None:
        return "the deadline"
    return deadline.strftime("%Y-%m-%d %H:%M UTC")


_TEMPLATES: dict[N, tuple[str, str]] = {
    N.NEW_ORDER: (
        "New Order - Please Commit",
        "You have a new order for \"{title}\" ({gross}). "
        "Please commit to the sale before {deadline}.",
    ),
    N.ORDER_CONFIRMED: (
        "Order Confirmed",
        "Your payment of {total} for \"{title}\" was received. "
        "The seller has until {deadline} to commit.",
    ),
    N.SALE_COMMITTED: (
        "Seller Committed to Your Order",
        "The seller has committed to selling \"{title}\". "
        "Your book will be prepared for collection.",
    ),
    N.COMMITMENT_CONFIRMED: (
        "Sale Commitment Confirmed",
        "You committed to selling \"{title}\". Please prepare it for collection.",
    ),
    N.ORDER_DECLINED: (
        "Order Declined",
        "The order for \"{title}\" was declined. Reason: {reason}. "
        "A refund of {total} is being processed.",
    ),
    N.ORDER_EXPIRED: (
        "Order Auto-Cancelled",
        "The order for \"{title}\" was cancelled because the seller did not commit "
        "within the commitment window. A refund of {total} is being processed.",
    ),
    N.ORDER_CANCELLED: (
        "Order Cancelled",
        "The order for \"{title}\" was cancelled. Reason: {reason}.",
    ),
    N.READY_FOR_COLLECTION: (
        "Ready for Collection",
        "\"{title}\" is packed and waiting for the courier.",
    ),
    N.ORDER_COLLECTED: (
        "Book Collected",
        "\"{title}\" has been collected and is on its way.",
    ),
    N.PAYOUT_COMPLETED: (
        "Payout Completed",
        "Your payout of {seller_amount} for \"{title}\" has been sent to your bank account.",
    ),
    N.PAYOUT_FAILED: (
        "Payout Failed",
        "We could not send your payout for \"{title}\". Our team will retry it shortly.",
    ),
    N.REFUND_PROCESSED: (
        "Refund Processed",
        "Your refund of {total} for \"{title}\" has been processed.",
    ),
    N.COMMIT_REMINDER: (
        "Reminder: Commit to Order ({hours_left}h left)",
        "Please commit to the sale of \"{title}\" before {deadline} "
        "or the order will be cancelled automatically.",
    ),
    N.COLLECTION_REMINDER: (
        "Reminder: Book Collection Required",
        "\"{title}\" has not been collected yet. "
        "Please check the collection arrangements for your order.",
    ),
}


def render(ntype: N | str, order: Order, **extra: Any) -> tuple[str, str]:
    """Return (title, message) for the given type and order."""
    title_tpl, message_tpl = _TEMPLATES[N(ntype)]
    values: dict[str, Any] = {
        "title": order.book.title,
        "gross": cents_to_display(order.gross_amount),
        "total": cents_to_display(order.total_amount),
        "seller_amount": cents_to_display(order.seller_amount or 0),
        "deadline": _fmt_deadline(order.commit_deadline),
        "reason": order.cancel_reason or "not specified",
        "hours_left": "",
    }
    values.update(extra)
    return title_tpl.format(**values), message_tpl.format(**values)
