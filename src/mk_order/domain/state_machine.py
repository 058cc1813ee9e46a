"""Order lifecycle graph and the pure predicates behind each conditional write.

The status lists in the WHERE clauses of infrastructure/persistence.py are
derived from TRANSITIONS below. The Python predicates exist so that a lost
conditional update can be explained to the caller (Expired vs InvalidState
vs Unauthorized) and so the rules are unit-testable without a database.

    pending_payment → paid → committed → ready_for_collection → collected
                      → payout_processing → paid_out
    paid → declined | cancelled
    committed | ready_for_collection → cancelled          (buyer)
    cancelled | declined → refund_pending → refunded
"""
from datetime import datetime

from src.mk_common.enums import OrderStatus as S
from src.mk_common.errors import (
    AppError,
    CommitWindowExpiredError,
    InvalidStateError,
    OrderNotFoundError,
    UnauthorizedActionError,
)
from src.mk_order.domain.models import Order

TRANSITIONS: dict[S, frozenset[S]] = {
    S.PENDING_PAYMENT: frozenset({S.PAID}),
    S.PAID: frozenset({S.COMMITTED, S.DECLINED, S.CANCELLED}),
    S.COMMITTED: frozenset({S.READY_FOR_COLLECTION, S.COLLECTED, S.CANCELLED}),
    S.READY_FOR_COLLECTION: frozenset({S.COLLECTED, S.CANCELLED}),
    S.COLLECTED: frozenset({S.PAYOUT_PROCESSING, S.PAID_OUT}),
    S.PAYOUT_PROCESSING: frozenset({S.PAYOUT_PROCESSING, S.PAID_OUT}),
    S.PAID_OUT: frozenset(),
    S.DECLINED: frozenset({S.REFUND_PENDING, S.REFUNDED}),
    S.CANCELLED: frozenset({S.REFUND_PENDING, S.REFUNDED}),
    S.REFUND_PENDING: frozenset({S.REFUND_PENDING, S.REFUNDED}),
    S.REFUNDED: frozenset(),
}


def sources_of(target: S) -> frozenset[S]:
    """Statuses with an edge into ``target``; the WHERE status IN list of its UPDATE."""
    return frozenset(s for s, targets in TRANSITIONS.items() if target in targets)


def reachable_from(status: S) -> frozenset[S]:
    """``status`` itself and every status the order can move on to from it."""
    seen = {status}
    stack = [status]
    while stack:
        for nxt in TRANSITIONS[stack.pop()]:
            if nxt not in seen:
                seen.add(nxt)
                stack.append(nxt)
    return frozenset(seen)


def in_lifecycle_order(statuses: frozenset[S]) -> tuple[str, ...]:
    return tuple(s.value for s in S if s in statuses)


# paid → cancelled is shared by buyer cancel and expiry; expiry narrows it to paid.
BUYER_CANCELLABLE = sources_of(S.CANCELLED)
COLLECTABLE = sources_of(S.COLLECTED)
PAYABLE = sources_of(S.PAYOUT_PROCESSING)
PAID_OUT_FROM = sources_of(S.PAID_OUT)
REFUNDABLE = sources_of(S.REFUNDED)

COLLECTED_OR_LATER = reachable_from(S.COLLECTED)
CANCELLED_OR_LATER = reachable_from(S.CANCELLED)
DECLINED_OR_LATER = reachable_from(S.DECLINED)


def commit_window_open(order: Order, now: datetime) -> bool:
    """Commit/decline predicate: status='paid' AND now < commit_deadline."""
    return (
        order.status == S.PAID
        and order.commit_deadline is not None
        and now < order.commit_deadline
    )


def commit_window_expired(order: Order, now: datetime) -> bool:
    """Expiry predicate: status='paid' AND now >= commit_deadline.

    Exact complement of commit_window_open for a paid order, so at any
    instant at most one of commit and expiry can win.
    """
    return (
        order.status == S.PAID
        and order.commit_deadline is not None
        and now >= order.commit_deadline
    )


def explain_seller_decision_failure(
    order: Order | None, order_id: str, seller_id: str, action: str, now: datetime
) -> AppError:
    """Map a lost commit/decline conditional update to the caller-facing error."""
    if order is None:
        return OrderNotFoundError(order_id)
    if order.seller_id != seller_id:
        return UnauthorizedActionError(order_id, action)
    if commit_window_expired(order, now):
        return CommitWindowExpiredError(order_id)
    return InvalidStateError(order_id, action, order.status)


def explain_failure(
    order: Order | None, order_id: str, actor_id: str | None, allowed_actor: str | None,
    action: str,
) -> AppError:
    """Generic lost-update explanation: missing, wrong actor, or wrong state."""
    if order is None:
        return OrderNotFoundError(order_id)
    if allowed_actor is not None and actor_id != allowed_actor:
        return UnauthorizedActionError(order_id, action)
    return InvalidStateError(order_id, action, order.status)
