"""Paystack REST client: transfers (seller payouts) and refunds.

Every call is a single POST with the secret key as Bearer token. Transport
errors, non-2xx answers and ``"status": false`` bodies all raise
PaymentGatewayError carrying the raw answer; callers persist that payload
for diagnosis and never show it to users.
"""
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from config.settings import settings
from src.mk_common.errors import PaymentGatewayError

logger = logging.getLogger(__name__)

# Paystack answers a refund request for an already reversed charge with a
# failure message rather than a distinct code.
_ALREADY_REFUNDED_MARKERS = ("fully reversed", "already been refunded", "already refunded")


@dataclass(frozen=True)
class TransferResult:
    transfer_code: str | None
    status: str
    raw: dict[str, Any]


@dataclass(frozen=True)
class RefundResult:
    refund_reference: str | None
    status: str
    already_refunded: bool
    raw: dict[str, Any]


class PaystackClient:
    def __init__(
        self,
        secret_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PAYSTACK_TIMEOUT_SECONDS
        self._transport = transport

    async def _post(self, endpoint: str, data: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(url, headers=headers, json=data, timeout=self.timeout)
        except httpx.HTTPError as exc:
            logger.error("Paystack %s transport error: %s", endpoint, exc)
            raise PaymentGatewayError(
                f"Paystack {endpoint} unreachable", payload={"error": str(exc)}
            ) from exc

        try:
            decoded: Any = response.json() if response.text else {}
        except ValueError:
            decoded = response.text
        body: dict[str, Any] = decoded if isinstance(decoded, dict) else {"raw": decoded}

        if response.status_code >= 400 or body.get("status") is False:
            logger.error(
                "Paystack %s error: %d - %s", endpoint, response.status_code, body.get("message")
            )
            raise PaymentGatewayError(
                body.get("message") or f"Paystack {endpoint} failed",
                status_code=response.status_code,
                payload=body,
            )
        return body

    async def transfer(
        self,
        amount: int,
        recipient_code: str,
        reference: str,
        reason: str,
        metadata: dict[str, Any] | None = None,
    ) -> TransferResult:
        """Queue a balance transfer to the seller's recipient."""
        body = await self._post(
            "/transfer",
            {
                "source": "balance",
                "amount": amount,
                "recipient": recipient_code,
                "reason": reason,
                "currency": settings.CURRENCY,
                "reference": reference,
                "metadata": metadata or {},
            },
        )
        data = body.get("data")
        if not isinstance(data, dict):
            data = {}
        return TransferResult(
            transfer_code=data.get("transfer_code"),
            status=str(data.get("status", "pending")),
            raw=body,
        )

    async def refund(
        self,
        transaction_reference: str,
        amount: int,
        customer_note: str,
        merchant_note: str,
    ) -> RefundResult:
        """Refund (part of) a captured charge. Already-refunded answers count as accepted."""
        try:
            body = await self._post(
                "/refund",
                {
                    "transaction": transaction_reference,
                    "amount": amount,
                    "currency": settings.CURRENCY,
                    "customer_note": customer_note,
                    "merchant_note": merchant_note,
                },
            )
        except PaymentGatewayError as exc:
            message = str(exc).lower()
            if any(marker in message for marker in _ALREADY_REFUNDED_MARKERS):
                logger.info("Paystack refund already processed: %s", transaction_reference)
                return RefundResult(
                    refund_reference=None, status="processed", already_refunded=True,
                    raw=exc.payload,
                )
            raise
        data = body.get("data")
        if not isinstance(data, dict):
            data = {}
        refund_id = data.get("id")
        return RefundResult(
            refund_reference=str(refund_id) if refund_id is not None else None,
            status=str(data.get("status", "pending")),
            already_refunded=False,
            raw=body,
        )
