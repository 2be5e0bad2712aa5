"""
Reconciliation poller for pending transactions.

Each cycle asks the gateway for the status of every Pending transaction
(oldest first, read in pages) and feeds the answers through
``SQLTransactionStore.apply_status``. Items are processed concurrently under
a semaphore; a failing item never affects the rest of the batch.
"""
import asyncio
import enum
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import structlog

from ppob_payments.core.responses import Recognized, parse_transaction_response
from ppob_payments.database.models import TransactionStatus, utcnow
from ppob_payments.database.store import (
    ApplyOutcome,
    SQLTransactionStore,
    StoreError,
    TransactionRecord,
)
from ppob_payments.integrations.digiflazz_client import DigiflazzClient
from ppob_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class ItemOutcome(str, enum.Enum):
    """What happened to one pending transaction during a cycle."""

    UPDATED = "updated"
    STILL_PENDING = "still_pending"
    UNCHANGED = "unchanged"
    CONFLICT = "conflict"
    UNRECOGNIZED = "unrecognized"
    ERROR = "error"


@dataclass(frozen=True)
class ItemResult:
    ref_id: str
    outcome: ItemOutcome
    status: Optional[TransactionStatus] = None
    error: Optional[str] = None


@dataclass
class ReconciliationReport:
    """Summary of one reconciliation cycle."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: bool = False
    results: List[ItemResult] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return dict(Counter(result.outcome.value for result in self.results))

    def to_dict(self) -> Dict[str, object]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped": self.skipped,
            "checked": len(self.results),
            "counts": self.counts(),
        }


_APPLY_TO_ITEM = {
    ApplyOutcome.UPDATED: ItemOutcome.UPDATED,
    ApplyOutcome.STILL_PENDING: ItemOutcome.STILL_PENDING,
    ApplyOutcome.UNCHANGED: ItemOutcome.UNCHANGED,
    ApplyOutcome.CONFLICT: ItemOutcome.CONFLICT,
}


class ReconciliationPoller:
    """
    Drives Pending transactions to a terminal state.

    No lock is taken: two pollers (or a poller and the webhook receiver)
    may check the same ref_id, and the conditional update in the store
    decides which terminal write lands.
    """

    def __init__(
        self,
        client: DigiflazzClient,
        store: SQLTransactionStore,
        batch_limit: int = 100,
        concurrency: int = 5,
    ):
        """
        Initialize poller.

        Args:
            client: Gateway client
            store: Transaction store
            batch_limit: Pending transactions read per page
            concurrency: Max status checks in flight
        """
        self.client = client
        self.store = store
        self.batch_limit = batch_limit
        self.concurrency = concurrency

    async def reconcile(self) -> ReconciliationReport:
        """
        Run one reconciliation cycle over every pending transaction.

        Pending rows are read in pages of ``batch_limit`` and each page is
        checked before the next one is read.

        Returns:
            ReconciliationReport: Per-item results; ``skipped`` when the
            pending query failed before anything was checked
        """
        report = ReconciliationReport(started_at=utcnow())
        start = time.monotonic()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(record: TransactionRecord) -> ItemResult:
            async with semaphore:
                return await self._reconcile_one(record)

        after: Optional[Tuple[datetime, str]] = None
        while True:
            try:
                page = await self.store.list_pending(limit=self.batch_limit, after=after)
            except StoreError as e:
                if not report.results:
                    logger.error("reconciliation_cycle_skipped", error=str(e))
                    report.skipped = True
                    report.finished_at = utcnow()
                    return report
                logger.error(
                    "reconciliation_cycle_truncated", checked=len(report.results), error=str(e)
                )
                break

            if not page:
                break
            report.results.extend(await asyncio.gather(*(_bounded(r) for r in page)))
            if len(page) < self.batch_limit:
                break
            after = (page[-1].created_at, page[-1].ref_id)

        report.finished_at = utcnow()
        counts = report.counts()
        still_pending = counts.get(ItemOutcome.STILL_PENDING.value, 0) + sum(
            counts.get(o.value, 0)
            for o in (ItemOutcome.UNRECOGNIZED, ItemOutcome.ERROR)
        )
        metrics.record_reconciliation_cycle(counts, still_pending, time.monotonic() - start)
        logger.info("reconciliation_cycle_completed", checked=len(report.results), **counts)
        return report

    async def _reconcile_one(self, record: TransactionRecord) -> ItemResult:
        """Check one transaction; never raises."""
        ref_id = record.ref_id
        try:
            body = await self.client.check_transaction_status(
                record.product_code, record.customer_no, ref_id
            )
            reply = parse_transaction_response(body)
            if not isinstance(reply, Recognized):
                logger.warning(
                    "reconciliation_unrecognized_response",
                    ref_id=ref_id,
                    reason=reply.reason,
                    raw=reply.raw,
                )
                await self.store.record_event(
                    ref_id,
                    "unrecognized_response",
                    "poller",
                    {"reason": reply.reason},
                )
                return ItemResult(ref_id, ItemOutcome.UNRECOGNIZED, record.status)

            applied = await self.store.apply_status(
                ref_id,
                reply.status,
                message=reply.message,
                rc=reply.rc,
                sn=reply.sn,
                price=reply.price,
                buyer_last_saldo=reply.buyer_last_saldo,
                source="poller",
            )
        except Exception as e:
            logger.exception("reconciliation_item_failed", ref_id=ref_id, error=str(e))
            return ItemResult(ref_id, ItemOutcome.ERROR, record.status, error=str(e))

        if applied.outcome is ApplyOutcome.CONFLICT:
            metrics.record_status_conflict("poller")
        return ItemResult(ref_id, _APPLY_TO_ITEM[applied.outcome], applied.record.status)
