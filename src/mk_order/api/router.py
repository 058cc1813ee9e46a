# src/mk_order/api/router.py
"""Buyer/seller order endpoints plus the service-token courier/operator surface."""
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.mk_common.database import get_db_session
from src.mk_common.response import ApiResponse, success_response
from src.mk_gateway.auth.dependencies import get_current_user_id, require_service_token
from src.mk_order.application.schemas import (
    CancelOrderRequest,
    CourierCollectedRequest,
    DeclineOrderRequest,
    MarkCollectedRequest,
    Role,
)
from src.mk_order.application.service import SettlementService
from src.mk_payout.application.service import PayoutService

router = APIRouter(prefix="/orders", tags=["orders"])
internal_router = APIRouter(
    prefix="/internal/orders",
    tags=["internal"],
    dependencies=[Depends(require_service_token)],
)

_service = SettlementService()
_payouts = PayoutService()


def _wrap(request: Request, data: object, message: str = "success") -> ApiResponse:
    resp = success_response(data, message)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.get("")
async def list_orders(
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    role: Role = Query("buyer", description="List as buyer or seller"),
    status: str | None = Query(None, description="Filter by order status"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
    cursor: str | None = Query(None, description="Pagination cursor (order ID)"),
) -> ApiResponse:
    data = await _service.list_orders(db, user_id, role, status, limit, cursor)
    return _wrap(request, data.model_dump())


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.get_order(db, order_id, user_id)
    return _wrap(request, data.model_dump())


@router.post("/{order_id}/commit")
async def commit_order(
    order_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.commit(db, order_id, user_id)
    return _wrap(request, data.model_dump(), "Sale committed")


@router.post("/{order_id}/decline")
async def decline_order(
    order_id: str,
    body: DeclineOrderRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.decline(db, order_id, user_id, body.reason)
    return _wrap(request, data.model_dump(), "Order declined; the buyer will be refunded")


@router.post("/{order_id}/ready")
async def mark_ready(
    order_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.mark_ready(db, order_id, user_id)
    return _wrap(request, data.model_dump(), "Order marked ready for collection")


@router.post("/{order_id}/collected")
async def mark_collected(
    order_id: str,
    body: MarkCollectedRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.mark_collected(db, order_id, user_id, notes=body.notes)
    return _wrap(request, data.model_dump(), "Collection confirmed")


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    body: CancelOrderRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.cancel(db, order_id, user_id, body.reason)
    return _wrap(request, data.model_dump(), "Order cancelled")


@router.get("/{order_id}/payouts")
async def list_payouts(
    order_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _payouts.list_payouts(db, order_id, user_id)
    return _wrap(request, data.model_dump())


# ---------------------------------------------------------------------------
# Service-token endpoints (courier integration, operators)
# ---------------------------------------------------------------------------


@internal_router.post("/{order_id}/collected")
async def courier_collected(
    order_id: str,
    body: CourierCollectedRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.mark_collected(
        db, order_id, body.collected_by, via_courier=True, notes=body.tracking_reference
    )
    return _wrap(request, data.model_dump(), "Collection confirmed")


@internal_router.post("/{order_id}/payout")
async def initiate_payout(
    order_id: str,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _payouts.initiate_payout(db, order_id)
    return _wrap(request, data.model_dump(), "Payout initiated")


@internal_router.post("/{order_id}/payout/retry")
async def retry_payout(
    order_id: str,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _payouts.retry_payout(db, order_id)
    return _wrap(request, data.model_dump(), "Payout retried")
