"""Tests for webhook payload parsing and signature verification."""

import json

import pytest

from src.mk_common.errors import MalformedWebhookError
from src.mk_webhook.domain.events import (
    ChargeSuccessEvent,
    RefundProcessedEvent,
    TransferFailedEvent,
    TransferSuccessEvent,
    UnknownEvent,
    parse_event,
)
from src.mk_webhook.domain.signature import compute_signature, verify_signature


def _charge(metadata: object) -> dict[str, object]:
    return {
        "event": "charge.success",
        "data": {
            "reference": "ref-1",
            "amount": 1050,
            "customer": {"email": "buyer@example.com"},
            "metadata": metadata,
        },
    }


class TestParseCharge:
    def test_single_book_checkout(self) -> None:
        event = parse_event(_charge({
            "buyer_id": "buyer-1",
            "book_id": "book-1",
            "seller_id": "seller-1",
            "book_title": "Dune",
            "book_price": 1000,
            "delivery_fee": 50,
        }))

        assert isinstance(event, ChargeSuccessEvent)
        lines = event.data.metadata.lines()
        assert len(lines) == 1
        assert lines[0].seller_id == "seller-1"
        assert lines[0].price == 1000
        assert lines[0].delivery_fee == 50

    def test_cart_checkout(self) -> None:
        event = parse_event(_charge({
            "buyer_id": "buyer-1",
            "cart_items": [
                {"book_id": "b1", "seller_id": "s1", "title": "Dune", "price": 1000},
                {"book_id": "b2", "seller_id": "s2", "title": "Emma", "price": 800,
                 "delivery_fee": 60},
            ],
        }))

        assert isinstance(event, ChargeSuccessEvent)
        lines = event.data.metadata.lines()
        assert [line.seller_id for line in lines] == ["s1", "s2"]
        assert lines[1].delivery_fee == 60

    def test_metadata_as_json_string(self) -> None:
        metadata = json.dumps({
            "buyer_id": 42,
            "book_id": "book-1",
            "seller_id": "seller-1",
            "book_price": 1000,
        })
        event = parse_event(_charge(metadata))

        assert isinstance(event, ChargeSuccessEvent)
        assert event.data.metadata.buyer_id == "42"

    def test_metadata_without_lines_is_malformed(self) -> None:
        with pytest.raises(MalformedWebhookError):
            parse_event(_charge({"buyer_id": "buyer-1"}))

    def test_negative_price_is_malformed(self) -> None:
        with pytest.raises(MalformedWebhookError):
            parse_event(_charge({
                "buyer_id": "buyer-1",
                "cart_items": [{"book_id": "b1", "seller_id": "s1", "title": "X", "price": -1}],
            }))


class TestParseOtherEvents:
    def test_transfer_success(self) -> None:
        event = parse_event({
            "event": "transfer.success",
            "data": {"reference": "PAYOUT_ORD_1_1", "transfer_code": "TRF_1", "amount": 900},
        })
        assert isinstance(event, TransferSuccessEvent)
        assert event.data.reference == "PAYOUT_ORD_1_1"

    @pytest.mark.parametrize("name", ["transfer.failed", "transfer.reversed"])
    def test_transfer_failure_variants(self, name: str) -> None:
        event = parse_event({"event": name, "data": {"reference": "PAYOUT_ORD_1_1"}})
        assert isinstance(event, TransferFailedEvent)

    def test_refund_processed(self) -> None:
        event = parse_event({
            "event": "refund.processed",
            "data": {"id": 3018284, "transaction_reference": "ref-1", "amount": 1050},
        })
        assert isinstance(event, RefundProcessedEvent)
        assert event.data.gateway_refund_id == "3018284"

    def test_unknown_event_is_kept(self) -> None:
        event = parse_event({"event": "subscription.create", "data": {"reference": "x"}})
        assert isinstance(event, UnknownEvent)
        assert event.data == {"reference": "x"}

    def test_missing_event_name(self) -> None:
        with pytest.raises(MalformedWebhookError):
            parse_event({"data": {}})

    def test_not_an_object(self) -> None:
        with pytest.raises(MalformedWebhookError):
            parse_event(["charge.success"])

    def test_transfer_without_reference(self) -> None:
        with pytest.raises(MalformedWebhookError):
            parse_event({"event": "transfer.success", "data": {}})


class TestSignature:
    def test_valid_signature(self) -> None:
        body = b'{"event":"charge.success"}'
        sig = compute_signature(body, "sk_test")
        assert len(sig) == 128
        assert verify_signature(body, sig, "sk_test")

    def test_uppercase_header_accepted(self) -> None:
        body = b"{}"
        assert verify_signature(body, compute_signature(body, "sk").upper(), "sk")

    def test_tampered_body(self) -> None:
        sig = compute_signature(b'{"amount":1050}', "sk_test")
        assert not verify_signature(b'{"amount":1}', sig, "sk_test")

    def test_missing_header(self) -> None:
        assert not verify_signature(b"{}", None, "sk_test")

    def test_empty_secret_never_verifies(self) -> None:
        assert not verify_signature(b"{}", compute_signature(b"{}", ""), "")
