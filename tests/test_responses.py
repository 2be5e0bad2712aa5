"""
Unit tests for gateway response parsing.
"""
from decimal import Decimal

import pytest

from ppob_payments.core.responses import (
    Recognized,
    Unrecognized,
    parse_balance_response,
    parse_transaction_response,
)
from ppob_payments.database.models import TransactionStatus

from .conftest import transaction_body


class TestParseTransactionResponse:
    """Test suite for the Recognized/Unrecognized split."""

    @pytest.mark.unit
    def test_success_payload(self) -> None:
        reply = parse_transaction_response(
            transaction_body("PPOB-1", "Sukses", sn="SN123", price="10250")
        )

        assert isinstance(reply, Recognized)
        assert reply.status is TransactionStatus.SUKSES
        assert reply.ref_id == "PPOB-1"
        assert reply.sn == "SN123"
        assert reply.rc == "00"
        assert reply.price == 10250
        assert reply.buyer_last_saldo == 489750
        assert reply.product_code == "PLN10"

    @pytest.mark.unit
    @pytest.mark.parametrize("raw_status", ["pending", "PENDING", " Pending "])
    def test_status_is_case_insensitive(self, raw_status: str) -> None:
        reply = parse_transaction_response({"data": {"ref_id": "r", "status": raw_status}})
        assert isinstance(reply, Recognized)
        assert reply.status is TransactionStatus.PENDING

    @pytest.mark.unit
    def test_buyer_tx_id_fallback(self) -> None:
        reply = parse_transaction_response({"data": {"buyer_tx_id": "PPOB-9", "status": "Gagal"}})
        assert isinstance(reply, Recognized)
        assert reply.ref_id == "PPOB-9"

    @pytest.mark.unit
    def test_empty_sn_becomes_none(self) -> None:
        reply = parse_transaction_response(transaction_body("r", "Pending", sn=""))
        assert isinstance(reply, Recognized)
        assert reply.sn is None

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "Bad Gateway",
            [],
            {},
            {"data": None},
            {"data": "oops"},
            {"data": {"ref_id": "r"}},
            {"data": {"ref_id": "r", "status": "Refund"}},
        ],
    )
    def test_unrecognized_shapes(self, raw: object) -> None:
        reply = parse_transaction_response(raw)
        assert isinstance(reply, Unrecognized)
        assert reply.reason


class TestParseBalanceResponse:
    """Test suite for deposit parsing."""

    @pytest.mark.unit
    def test_deposit(self) -> None:
        assert parse_balance_response({"data": {"deposit": 500000}}) == Decimal("500000")

    @pytest.mark.unit
    def test_saldo_fallback(self) -> None:
        assert parse_balance_response({"data": {"saldo": "1250.50"}}) == Decimal("1250.50")

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "raw",
        [None, {}, {"data": {}}, {"data": {"deposit": "abc"}}, {"data": {"deposit": True}}],
    )
    def test_invalid_raises_value_error(self, raw: object) -> None:
        with pytest.raises(ValueError):
            parse_balance_response(raw)
