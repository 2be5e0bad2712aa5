"""
PPOB service controller.

Owns every long-lived object of the transaction lifecycle (gateway client,
store, submitter, poller, balance checker, catalogue and the periodic
jobs) and exposes the operations the HTTP layer calls.
"""
from typing import List, Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ppob_payments.config import Settings, get_settings
from ppob_payments.core.balance import Balance, BalanceChecker
from ppob_payments.core.catalogue import ProductCatalogue
from ppob_payments.core.idempotency import RefIdGenerator
from ppob_payments.core.reconciliation import ReconciliationPoller, ReconciliationReport
from ppob_payments.core.submitter import SubmissionResult, TransactionSubmitter
from ppob_payments.database.connection import create_engine, create_session_factory, init_db
from ppob_payments.database.models import Product, TransactionStatus
from ppob_payments.database.store import ProductRepository, SQLTransactionStore, TransactionRecord
from ppob_payments.integrations.digiflazz_client import DigiflazzClient
from ppob_payments.integrations.webhook_handler import WebhookHandler
from ppob_payments.monitoring.health import HealthCheck
from ppob_payments.workers.scheduler import PeriodicTask

logger = structlog.get_logger(__name__)


class PPOBService:
    """
    Controller for the PPOB transaction lifecycle.

    Args:
        settings: Application settings
        session_factory: Async session factory for the store
        client: Gateway client
        engine: Engine behind ``session_factory``; disposed on close
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        client: DigiflazzClient,
        engine: Optional[AsyncEngine] = None,
    ):
        self.settings = settings
        self.engine = engine
        self.session_factory = session_factory
        self.client = client

        self.store = SQLTransactionStore(session_factory)
        self.catalogue = ProductCatalogue(client, ProductRepository(session_factory))
        self.ref_ids = RefIdGenerator(settings.transaction_prefix, exists=self.store.exists)
        self.submitter = TransactionSubmitter(client, self.store, self.catalogue, self.ref_ids)
        self.poller = ReconciliationPoller(
            client,
            self.store,
            batch_limit=settings.reconciliation_batch_limit,
            concurrency=settings.reconciliation_concurrency,
        )
        self.balance_checker = BalanceChecker(client)
        self.webhooks = WebhookHandler(self.store, settings.digiflazz_webhook_secret)
        self.health = HealthCheck(session_factory, self.balance_checker, client.circuit_breaker)

        self._tasks: List[PeriodicTask] = []

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "PPOBService":
        """Build the service with its own engine and gateway client."""
        settings = settings or get_settings()
        engine = create_engine(settings)
        return cls(
            settings,
            create_session_factory(engine),
            DigiflazzClient(settings, http_client=http_client),
            engine=engine,
        )

    async def init_storage(self) -> None:
        """Create tables when missing (migrations own the schema in production)."""
        if self.engine is not None:
            await init_db(self.engine)

    async def submit_transaction(
        self, customer_no: str, product_code: str, ref_id: Optional[str] = None
    ) -> SubmissionResult:
        return await self.submitter.submit(customer_no, product_code, ref_id=ref_id)

    async def get_transaction_history(
        self, limit: int = 50, status: Optional[TransactionStatus] = None
    ) -> List[TransactionRecord]:
        """Most recently updated transactions first."""
        return await self.store.query(status=status, limit=limit)

    async def get_transaction(self, ref_id: str) -> Optional[TransactionRecord]:
        return await self.store.get(ref_id)

    def get_balance(self) -> Balance:
        """Last known balance; never raises."""
        return self.balance_checker.balance

    async def refresh_balance(self) -> Balance:
        return await self.balance_checker.check_balance()

    async def reconcile(self) -> ReconciliationReport:
        return await self.poller.reconcile()

    async def sync_products(self) -> int:
        return await self.catalogue.sync_products()

    async def list_products(
        self, category: Optional[str] = None, enabled_only: bool = True
    ) -> List[Product]:
        return await self.catalogue.list_products(category=category, enabled_only=enabled_only)

    async def start(self) -> None:
        """Start reconciliation and balance jobs; both run once right away."""
        if self._tasks:
            return
        self._tasks = [
            PeriodicTask(
                "reconciliation",
                self.settings.reconciliation_interval_seconds,
                self.reconcile,
            ),
            PeriodicTask(
                "balance",
                self.settings.balance_check_interval_seconds,
                self.refresh_balance,
            ),
        ]
        for task in self._tasks:
            task.start()
        logger.info("ppob_service_started", tasks=[t.name for t in self._tasks])

    async def stop(self) -> None:
        """Stop the periodic jobs, letting in-flight runs finish."""
        for task in self._tasks:
            await task.stop(timeout=self.settings.shutdown_timeout_seconds)
        if self._tasks:
            logger.info("ppob_service_stopped")
        self._tasks = []

    async def close(self) -> None:
        """Stop jobs and release the HTTP client and database engine."""
        await self.stop()
        await self.client.close()
        if self.engine is not None:
            await self.engine.dispose()
