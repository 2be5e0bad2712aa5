"""
Transaction store: the only shared mutable resource of the service.

Every status transition goes through ``apply_status``, a compare-and-set
update on ``(status = 'Pending', updated_at = <last seen>)``. That makes
terminal states absorbing even when a poller and a webhook (or two pollers)
race on the same ref_id, without taking any lock.
"""
import enum
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ppob_payments.database.models import (
    Product,
    Transaction,
    TransactionEvent,
    TransactionStatus,
    utcnow,
)

logger = structlog.get_logger(__name__)

_MAX_CAS_ATTEMPTS = 3
_MUTABLE_FIELDS = {"customer_no", "product_code", "message", "rc", "sn", "price", "buyer_last_saldo"}


class StoreError(Exception):
    """Raised when the transaction store cannot complete an operation."""

    pass


class DuplicateTransactionError(StoreError):
    """Raised when inserting a ref_id that already exists."""

    def __init__(self, ref_id: str):
        super().__init__(f"Transaction {ref_id} already exists")
        self.ref_id = ref_id


class TransactionNotFoundError(StoreError):
    """Raised when a ref_id is not in the store."""

    def __init__(self, ref_id: str):
        super().__init__(f"Transaction {ref_id} not found")
        self.ref_id = ref_id


class ApplyOutcome(str, enum.Enum):
    """Result of applying a gateway status to a stored transaction."""

    UPDATED = "updated"
    STILL_PENDING = "still_pending"
    UNCHANGED = "unchanged"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class TransactionRecord:
    """Detached, read-only view of a transaction row."""

    ref_id: str
    customer_no: str
    product_code: str
    status: TransactionStatus
    message: Optional[str]
    rc: Optional[str]
    sn: Optional[str]
    price: Optional[int]
    buyer_last_saldo: Optional[int]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, txn: Transaction) -> "TransactionRecord":
        return cls(
            ref_id=txn.ref_id,
            customer_no=txn.customer_no,
            product_code=txn.product_code,
            status=TransactionStatus(txn.status),
            message=txn.message,
            rc=txn.rc,
            sn=txn.sn,
            price=txn.price,
            buyer_last_saldo=txn.buyer_last_saldo,
            created_at=txn.created_at,
            updated_at=txn.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data


@dataclass(frozen=True)
class ApplyResult:
    outcome: ApplyOutcome
    record: TransactionRecord
    previous_status: TransactionStatus


def next_updated_at(previous: Optional[datetime]) -> datetime:
    """Timestamp for a write: now, but strictly after ``previous``."""
    now = utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


class SQLTransactionStore:
    """
    Transaction store backed by SQLAlchemy async sessions.

    Each public method runs in its own session and commits before
    returning, so callers get read-your-writes across methods.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def insert(
        self,
        *,
        ref_id: str,
        customer_no: str,
        product_code: str,
        status: TransactionStatus = TransactionStatus.PENDING,
        message: Optional[str] = None,
        rc: Optional[str] = None,
        sn: Optional[str] = None,
        price: Optional[int] = None,
        buyer_last_saldo: Optional[int] = None,
        source: str = "submitter",
        event_data: Optional[Dict[str, Any]] = None,
    ) -> TransactionRecord:
        """
        Insert a new transaction and its ``submitted`` audit event.

        Raises:
            DuplicateTransactionError: If ref_id already exists
            StoreError: On any other database failure
        """
        now = utcnow()
        txn = Transaction(
            ref_id=ref_id,
            customer_no=customer_no,
            product_code=product_code,
            status=status.value,
            message=message,
            rc=rc,
            sn=sn,
            price=price,
            buyer_last_saldo=buyer_last_saldo,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as db:
            try:
                db.add(txn)
                await db.flush()
                db.add(
                    TransactionEvent(
                        ref_id=ref_id,
                        event_type="submitted",
                        source=source,
                        event_data={"status": status.value, **(event_data or {})},
                        created_at=now,
                    )
                )
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise DuplicateTransactionError(ref_id)
            except SQLAlchemyError as e:
                await db.rollback()
                raise StoreError(f"Failed to insert transaction {ref_id}: {e}") from e

        logger.info("transaction_inserted", ref_id=ref_id, status=status.value, source=source)
        return TransactionRecord.from_model(txn)

    async def get(self, ref_id: str) -> Optional[TransactionRecord]:
        async with self._session_factory() as db:
            txn = await db.get(Transaction, ref_id)
            return TransactionRecord.from_model(txn) if txn is not None else None

    async def exists(self, ref_id: str) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(select(Transaction.ref_id).where(Transaction.ref_id == ref_id))
            return result.scalar_one_or_none() is not None

    async def query(
        self,
        *,
        status: Optional[TransactionStatus] = None,
        customer_no: Optional[str] = None,
        newest_first: bool = True,
        limit: Optional[int] = None,
    ) -> List[TransactionRecord]:
        """
        Query transactions ordered by ``updated_at``.

        Args:
            status: Only return this status
            customer_no: Only return this destination
            newest_first: Most recently touched first (default) or oldest first
            limit: Max rows

        Returns:
            List[TransactionRecord]: Matching records
        """
        stmt = select(Transaction)
        if status is not None:
            stmt = stmt.where(Transaction.status == status.value)
        if customer_no is not None:
            stmt = stmt.where(Transaction.customer_no == customer_no)
        order = Transaction.updated_at.desc() if newest_first else Transaction.updated_at.asc()
        stmt = stmt.order_by(order)
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as db:
            try:
                result = await db.execute(stmt)
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to query transactions: {e}") from e
            return [TransactionRecord.from_model(t) for t in result.scalars().all()]

    async def list_pending(
        self,
        limit: Optional[int] = None,
        after: Optional[Tuple[datetime, str]] = None,
    ) -> List[TransactionRecord]:
        """
        Pending transactions in creation order.

        The order uses ``(created_at, ref_id)``, which status writes never
        change, so paging with ``after`` visits every pending row once.

        Args:
            limit: Max rows
            after: ``(created_at, ref_id)`` of the last row of the previous page

        Returns:
            List[TransactionRecord]: Pending records
        """
        stmt = select(Transaction).where(Transaction.status == TransactionStatus.PENDING.value)
        if after is not None:
            created_at, ref_id = after
            stmt = stmt.where(
                or_(
                    Transaction.created_at > created_at,
                    and_(Transaction.created_at == created_at, Transaction.ref_id > ref_id),
                )
            )
        stmt = stmt.order_by(Transaction.created_at.asc(), Transaction.ref_id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as db:
            try:
                result = await db.execute(stmt)
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to list pending transactions: {e}") from e
            return [TransactionRecord.from_model(t) for t in result.scalars().all()]

    async def update(self, ref_id: str, **fields: Any) -> TransactionRecord:
        """
        Partial update of non-status fields; always bumps ``updated_at``.

        Status transitions must go through ``apply_status``.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        async with self._session_factory() as db:
            txn = await db.get(Transaction, ref_id)
            if txn is None:
                raise TransactionNotFoundError(ref_id)
            for key, value in fields.items():
                setattr(txn, key, value)
            txn.updated_at = next_updated_at(txn.updated_at)
            try:
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise StoreError(f"Failed to update transaction {ref_id}: {e}") from e
            return TransactionRecord.from_model(txn)

    async def apply_status(
        self,
        ref_id: str,
        status: TransactionStatus,
        *,
        message: Optional[str] = None,
        rc: Optional[str] = None,
        sn: Optional[str] = None,
        price: Optional[int] = None,
        buyer_last_saldo: Optional[int] = None,
        source: str = "poller",
    ) -> ApplyResult:
        """
        Apply a status reported by the gateway, first terminal write wins.

        - Pending -> Pending: refreshes message/rc/price/saldo
        - Pending -> terminal: transition, fills rc/sn/message
        - terminal -> same terminal: no-op
        - terminal -> anything else: no write, conflict recorded

        Raises:
            TransactionNotFoundError: If ref_id is unknown
        """
        for _ in range(_MAX_CAS_ATTEMPTS):
            async with self._session_factory() as db:
                txn = await db.get(Transaction, ref_id)
                if txn is None:
                    raise TransactionNotFoundError(ref_id)

                current = TransactionStatus(txn.status)
                if current.is_terminal:
                    return await self._resolve_terminal(
                        db, txn, current, status, message=message, rc=rc, sn=sn, source=source
                    )

                seen_updated_at = txn.updated_at
                values: Dict[str, Any] = {
                    "status": status.value,
                    "updated_at": next_updated_at(seen_updated_at),
                }
                for key, value in (
                    ("message", message),
                    ("rc", rc),
                    ("price", price),
                    ("buyer_last_saldo", buyer_last_saldo),
                ):
                    if value is not None:
                        values[key] = value
                if status is TransactionStatus.SUKSES and sn:
                    values["sn"] = sn

                stmt = (
                    update(Transaction)
                    .where(
                        Transaction.ref_id == ref_id,
                        Transaction.status == TransactionStatus.PENDING.value,
                        Transaction.updated_at == seen_updated_at,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                result = await db.execute(stmt)
                if result.rowcount != 1:
                    # Another writer got there first; re-read and decide again.
                    await db.rollback()
                    logger.info("transaction_write_race_retry", ref_id=ref_id, source=source)
                    continue

                if status.is_terminal:
                    db.add(
                        TransactionEvent(
                            ref_id=ref_id,
                            event_type="status_changed",
                            source=source,
                            event_data={
                                "from": current.value,
                                "to": status.value,
                                "rc": rc,
                                "sn": sn,
                                "message": message,
                            },
                            created_at=values["updated_at"],
                        )
                    )
                await db.commit()

                refreshed = await db.get(Transaction, ref_id, populate_existing=True)
                record = TransactionRecord.from_model(refreshed)

            outcome = ApplyOutcome.UPDATED if status.is_terminal else ApplyOutcome.STILL_PENDING
            logger.info(
                "transaction_status_applied",
                ref_id=ref_id,
                outcome=outcome.value,
                status=status.value,
                source=source,
            )
            return ApplyResult(outcome=outcome, record=record, previous_status=current)

        raise StoreError(f"Gave up applying status to {ref_id} after {_MAX_CAS_ATTEMPTS} attempts")

    async def _resolve_terminal(
        self,
        db: AsyncSession,
        txn: Transaction,
        current: TransactionStatus,
        incoming: TransactionStatus,
        *,
        message: Optional[str],
        rc: Optional[str],
        sn: Optional[str],
        source: str,
    ) -> ApplyResult:
        record = TransactionRecord.from_model(txn)

        if incoming is current:
            return ApplyResult(ApplyOutcome.UNCHANGED, record, current)

        if not incoming.is_terminal:
            logger.warning(
                "transaction_status_regression_ignored",
                ref_id=txn.ref_id,
                stored_status=current.value,
                reported_status=incoming.value,
                source=source,
            )
            return ApplyResult(ApplyOutcome.UNCHANGED, record, current)

        logger.error(
            "transaction_status_conflict",
            ref_id=txn.ref_id,
            stored_status=current.value,
            reported_status=incoming.value,
            reported_rc=rc,
            reported_sn=sn,
            reported_message=message,
            source=source,
        )
        db.add(
            TransactionEvent(
                ref_id=txn.ref_id,
                event_type="status_conflict",
                source=source,
                event_data={
                    "stored": current.value,
                    "reported": incoming.value,
                    "rc": rc,
                    "sn": sn,
                    "message": message,
                },
            )
        )
        await db.commit()
        return ApplyResult(ApplyOutcome.CONFLICT, record, current)

    async def record_event(
        self,
        ref_id: str,
        event_type: str,
        source: str,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self._session_factory() as db:
            db.add(
                TransactionEvent(
                    ref_id=ref_id,
                    event_type=event_type,
                    source=source,
                    event_data=event_data or {},
                )
            )
            await db.commit()

    async def list_events(self, ref_id: str) -> List[TransactionEvent]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(TransactionEvent)
                .where(TransactionEvent.ref_id == ref_id)
                .order_by(TransactionEvent.id)
            )
            return list(result.scalars().all())


class ProductRepository:
    """Access to the locally cached gateway price list."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def upsert_many(self, products: Iterable[Dict[str, Any]]) -> int:
        count = 0
        async with self._session_factory() as db:
            for fields in products:
                await db.merge(Product(**fields, updated_at=utcnow()))
                count += 1
            await db.commit()
        return count

    async def get(self, buyer_sku_code: str) -> Optional[Product]:
        async with self._session_factory() as db:
            return await db.get(Product, buyer_sku_code)

    async def list_products(
        self, category: Optional[str] = None, enabled_only: bool = True
    ) -> List[Product]:
        stmt = select(Product).order_by(Product.category, Product.price)
        if category:
            stmt = stmt.where(Product.category == category)
        if enabled_only:
            stmt = stmt.where(
                Product.buyer_product_status.is_(True),
                Product.seller_product_status.is_(True),
            )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())
