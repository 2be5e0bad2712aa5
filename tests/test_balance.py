"""
Tests for the balance checker.
"""
from decimal import Decimal
from typing import Any, Dict

import httpx
import pytest

from ppob_payments.core.balance import Balance, BalanceChecker
from ppob_payments.integrations.digiflazz_client import DigiflazzClient

from .conftest import FakeGateway


class TestBalanceChecker:
    """Test suite for last-known-value balance checks."""

    @pytest.mark.unit
    def test_initial_state_is_zero_and_stale(self, digiflazz_client: DigiflazzClient) -> None:
        balance = BalanceChecker(digiflazz_client).balance

        assert balance == Balance()
        assert balance.amount == Decimal("0")
        assert balance.fetched_at is None
        assert balance.stale

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success(self, digiflazz_client: DigiflazzClient) -> None:
        checker = BalanceChecker(digiflazz_client)

        balance = await checker.check_balance()

        assert balance.amount == Decimal("500000")
        assert balance.fetched_at is not None
        assert not balance.stale
        assert balance.error is None
        assert checker.balance is balance

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_keeps_last_value_and_flags_stale(
        self, digiflazz_client: DigiflazzClient, gateway: FakeGateway
    ) -> None:
        checker = BalanceChecker(digiflazz_client)
        good = await checker.check_balance()

        def down(payload: Dict[str, Any]) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        gateway.balance = down
        balance = await checker.check_balance()

        assert balance.amount == good.amount
        assert balance.fetched_at == good.fetched_at
        assert balance.stale
        assert "connection refused" in balance.error

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unparseable_body_never_raises(
        self, digiflazz_client: DigiflazzClient, gateway: FakeGateway
    ) -> None:
        gateway.balance = lambda payload: httpx.Response(200, json={"data": {"rc": "41"}})
        checker = BalanceChecker(digiflazz_client)

        balance = await checker.check_balance()

        assert balance.stale
        assert balance.amount == Decimal("0")
        assert balance.error

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_recovers_after_failure(
        self, digiflazz_client: DigiflazzClient, gateway: FakeGateway
    ) -> None:
        gateway.balance = lambda payload: httpx.Response(500, json={})
        checker = BalanceChecker(digiflazz_client)
        assert (await checker.check_balance()).stale

        gateway.balance = lambda payload: httpx.Response(200, json={"data": {"deposit": 1250}})
        balance = await checker.check_balance()

        assert balance.amount == Decimal("1250")
        assert not balance.stale
        assert balance.error is None

    @pytest.mark.unit
    def test_to_dict(self) -> None:
        assert Balance().to_dict() == {
            "amount": "0",
            "fetched_at": None,
            "stale": True,
            "error": None,
        }
