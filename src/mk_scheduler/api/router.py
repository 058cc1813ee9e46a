"""Job triggers (service token) and the client-facing manual expiry check."""
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.mk_common.database import get_db_session
from src.mk_common.datetime_utils import utc_now
from src.mk_common.response import ApiResponse, success_response
from src.mk_gateway.auth.dependencies import get_current_user_id, require_service_token
from src.mk_notification.application.service import cleanup_notifications
from src.mk_scheduler.application.schemas import ExpiryCheckRequest
from src.mk_scheduler.application.service import CommitmentClock

router = APIRouter(
    prefix="/jobs", tags=["jobs"], dependencies=[Depends(require_service_token)]
)
expiry_router = APIRouter(prefix="/orders", tags=["orders"])

_clock = CommitmentClock()


def _wrap(request: Request, data: object) -> ApiResponse:
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@expiry_router.post("/expiry-check")
async def expiry_check(
    body: ExpiryCheckRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _clock.manual_expiry_check(db, user_id, utc_now(), body.order_id)
    return _wrap(request, data.model_dump())


@router.post("/expire-commits")
async def expire_commits(
    db: Annotated[AsyncSession, Depends(get_db_session)], request: Request
) -> ApiResponse:
    data = await _clock.run_expiry_sweep(db, utc_now())
    return _wrap(request, data.model_dump())


@router.post("/commit-reminders")
async def commit_reminders(
    db: Annotated[AsyncSession, Depends(get_db_session)], request: Request
) -> ApiResponse:
    data = await _clock.send_commit_reminders(db, utc_now())
    return _wrap(request, data.model_dump())


@router.post("/collection-reminders")
async def collection_reminders(
    db: Annotated[AsyncSession, Depends(get_db_session)], request: Request
) -> ApiResponse:
    data = await _clock.send_collection_reminders(db, utc_now())
    return _wrap(request, data.model_dump())


@router.post("/retry-refunds")
async def retry_refunds(
    db: Annotated[AsyncSession, Depends(get_db_session)], request: Request
) -> ApiResponse:
    data = await _clock.retry_stalled_refunds(db, utc_now())
    return _wrap(request, data.model_dump())


@router.post("/cleanup-notifications")
async def cleanup(
    db: Annotated[AsyncSession, Depends(get_db_session)], request: Request
) -> ApiResponse:
    data = await cleanup_notifications(db, utc_now())
    return _wrap(request, data.model_dump())
