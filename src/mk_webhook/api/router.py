"""Paystack webhook endpoint: signature-verified, raw body in, envelope out."""
from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.mk_common.database import get_db_session
from src.mk_common.response import ApiResponse, success_response
from src.mk_webhook.application.service import WebhookReconciler
from src.mk_webhook.domain.signature import SIGNATURE_HEADER

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_reconciler = WebhookReconciler()


@router.post("/paystack")
async def paystack_webhook(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    raw_body = await request.body()
    outcome = await _reconciler.handle(db, raw_body, request.headers.get(SIGNATURE_HEADER))
    resp = success_response(asdict(outcome), outcome.outcome)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp
