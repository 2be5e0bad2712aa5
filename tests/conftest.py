"""
Pytest configuration and fixtures.

The database is a throwaway SQLite file per test (aiosqlite); the gateway is
an ``httpx.MockTransport`` in front of ``FakeGateway``.
"""
import asyncio
import json
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ppob_payments.config import Settings
from ppob_payments.core.service import PPOBService
from ppob_payments.database.connection import create_engine, create_session_factory, init_db
from ppob_payments.database.store import ProductRepository, SQLTransactionStore
from ppob_payments.integrations.digiflazz_client import DigiflazzClient

Responder = Callable[[Dict[str, Any]], Any]


def transaction_body(ref_id: str, status: str = "Pending", **fields: Any) -> Dict[str, Any]:
    """A ``/v1/transaction`` response body the way Digiflazz shapes it."""
    data = {
        "ref_id": ref_id,
        "customer_no": fields.pop("customer_no", "081234567890"),
        "buyer_sku_code": fields.pop("buyer_sku_code", "PLN10"),
        "message": fields.pop("message", f"Transaksi {status}"),
        "status": status,
        "rc": fields.pop("rc", {"Pending": "03", "Sukses": "00", "Gagal": "02"}.get(status, "")),
        "sn": fields.pop("sn", ""),
        "buyer_last_saldo": fields.pop("buyer_last_saldo", 489750),
        "price": fields.pop("price", 10250),
        "tele": "",
        "wa": "",
    }
    data.update(fields)
    return {"data": data}


class FakeGateway:
    """
    In-process stand-in for the Digiflazz API.

    Each endpoint is a responder taking the decoded request payload and
    returning an ``httpx.Response`` (or raising an ``httpx`` error).
    ``statuses`` maps ref_id to the body answered for ``cmd=status``.
    """

    def __init__(self) -> None:
        self.requests: List[Tuple[str, Dict[str, Any]]] = []
        self.statuses: Dict[str, Any] = {}
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self.purchase: Responder = self._default_purchase
        self.status: Responder = self._default_status
        self.balance: Responder = lambda payload: httpx.Response(
            200, json={"data": {"deposit": 500000}}
        )
        self.price_list: Responder = lambda payload: httpx.Response(200, json={"data": []})

    @staticmethod
    def _default_purchase(payload: Dict[str, Any]) -> httpx.Response:
        return httpx.Response(200, json=transaction_body(payload["ref_id"], "Pending"))

    def _default_status(self, payload: Dict[str, Any]) -> httpx.Response:
        answer = self.statuses.get(payload["ref_id"])
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, httpx.Response):
            return answer
        if answer is None:
            answer = transaction_body(payload["ref_id"], "Pending")
        return httpx.Response(200, json=answer)

    def calls(self, path: str, cmd: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            payload
            for p, payload in self.requests
            if p == path and (cmd is None or payload.get("cmd") == cmd)
        ]

    @property
    def purchases(self) -> List[Dict[str, Any]]:
        return [p for p in self.calls("/v1/transaction") if p.get("cmd") != "status"]

    @property
    def status_checks(self) -> List[Dict[str, Any]]:
        return self.calls("/v1/transaction", cmd="status")

    async def handle(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        path = request.url.path
        self.requests.append((path, payload))

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if path == "/v1/transaction":
                responder = self.status if payload.get("cmd") == "status" else self.purchase
            elif path == "/v1/cek-saldo":
                responder = self.balance
            elif path == "/v1/price-list":
                responder = self.price_list
            else:
                return httpx.Response(404, json={"message": "not found"})
            return responder(payload)
        finally:
            self.in_flight -= 1


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        digiflazz_username="testuser",
        digiflazz_api_key="dev-key",
        digiflazz_base_url="https://gateway.test/",
        digiflazz_webhook_secret="whsec",
        digiflazz_retry_attempts=2,
        digiflazz_retry_base_delay=0.0,
        transaction_prefix="PPOB",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'ppob_test.db'}",
        app_name="ppob-payments-test",
        app_env="test",
        log_level="DEBUG",
        log_json=False,
        scheduler_enabled=False,
        reconciliation_interval_seconds=0.05,
        balance_check_interval_seconds=0.05,
        shutdown_timeout_seconds=1.0,
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Create test database engine with all tables."""
    engine = create_engine(test_settings)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> SQLTransactionStore:
    return SQLTransactionStore(session_factory)


@pytest.fixture
def product_repository(session_factory: async_sessionmaker[AsyncSession]) -> ProductRepository:
    return ProductRepository(session_factory)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def digiflazz_client(
    test_settings: Settings, gateway: FakeGateway
) -> AsyncGenerator[DigiflazzClient, Any]:
    """Gateway client wired to the fake gateway."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(gateway.handle))
    client = DigiflazzClient(test_settings, http_client=http_client)
    yield client
    await http_client.aclose()


def sample_products() -> List[Dict[str, Any]]:
    """Price-list entries: two active products and one disabled."""
    return [
        {
            "product_name": "PLN 10.000",
            "category": "PLN",
            "brand": "PLN",
            "type": "Umum",
            "seller_name": "Seller A",
            "price": 10250,
            "buyer_sku_code": "PLN10",
            "buyer_product_status": True,
            "seller_product_status": True,
            "unlimited_stock": True,
            "stock": 0,
            "multi": True,
            "start_cut_off": "23:45",
            "end_cut_off": "00:15",
            "desc": "Token PLN 10.000",
        },
        {
            "product_name": "XL 10.000",
            "category": "Pulsa",
            "brand": "XL",
            "type": "Umum",
            "seller_name": "Seller B",
            "price": 10400,
            "buyer_sku_code": "xld10",
            "buyer_product_status": True,
            "seller_product_status": True,
            "unlimited_stock": False,
            "stock": 120,
            "multi": False,
            "start_cut_off": "0:0",
            "end_cut_off": "0:0",
            "desc": "-",
        },
        {
            "product_name": "Telkomsel 5.000",
            "category": "Pulsa",
            "brand": "TELKOMSEL",
            "type": "Umum",
            "seller_name": "Seller C",
            "price": 5600,
            "buyer_sku_code": "TSEL5",
            "buyer_product_status": True,
            "seller_product_status": False,
            "unlimited_stock": True,
            "stock": 0,
            "multi": True,
            "start_cut_off": "0:0",
            "end_cut_off": "0:0",
            "desc": "-",
        },
    ]


@pytest_asyncio.fixture
async def seeded_products(product_repository: ProductRepository) -> int:
    """Store the sample catalogue directly."""
    from ppob_payments.core.catalogue import product_fields

    return await product_repository.upsert_many(product_fields(p) for p in sample_products())


@pytest.fixture
def service(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    digiflazz_client: DigiflazzClient,
) -> PPOBService:
    """Service over the test database and fake gateway."""
    return PPOBService(test_settings, session_factory, digiflazz_client)
