"""
Tests for the SQL transaction store and its compare-and-set transitions.
"""
import asyncio
from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from ppob_payments.database.models import TransactionStatus, utcnow
from ppob_payments.database.store import (
    ApplyOutcome,
    DuplicateTransactionError,
    SQLTransactionStore,
    TransactionNotFoundError,
    next_updated_at,
)


async def _insert(store: SQLTransactionStore, ref_id: str = "PPOB-1", **fields):
    return await store.insert(
        ref_id=ref_id,
        customer_no=fields.pop("customer_no", "081234567890"),
        product_code=fields.pop("product_code", "PLN10"),
        **fields,
    )


class TestNextUpdatedAt:
    """Test suite for strictly increasing write timestamps."""

    @pytest.mark.unit
    def test_without_previous_is_now(self) -> None:
        assert next_updated_at(None) <= utcnow() + timedelta(seconds=1)

    @pytest.mark.unit
    def test_previous_in_future_bumps_one_microsecond(self) -> None:
        future = utcnow() + timedelta(hours=1)
        assert next_updated_at(future) == future + timedelta(microseconds=1)


class TestInsertAndRead:
    """Test suite for insert/get/query."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_insert_then_get(self, store: SQLTransactionStore) -> None:
        created = await _insert(store, price=10250)
        fetched = await store.get("PPOB-1")

        assert fetched == created
        assert fetched.status is TransactionStatus.PENDING
        assert fetched.created_at == fetched.updated_at
        assert await store.exists("PPOB-1")
        assert not await store.exists("PPOB-2")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_duplicate_ref_id_rejected(self, store: SQLTransactionStore) -> None:
        await _insert(store)
        with pytest.raises(DuplicateTransactionError) as exc_info:
            await _insert(store, customer_no="089999999999")

        assert exc_info.value.ref_id == "PPOB-1"
        assert (await store.get("PPOB-1")).customer_no == "081234567890"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_insert_writes_submitted_event(self, store: SQLTransactionStore) -> None:
        await _insert(store)
        events = await store.list_events("PPOB-1")

        assert [e.event_type for e in events] == ["submitted"]
        assert events[0].event_data["status"] == "Pending"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_query_filters_and_orders_by_updated_at(
        self, store: SQLTransactionStore
    ) -> None:
        await _insert(store, "A")
        await _insert(store, "B", status=TransactionStatus.SUKSES)
        await _insert(store, "C")
        await store.update("A", message="touched")

        assert [r.ref_id for r in await store.query()] == ["A", "C", "B"]
        assert [r.ref_id for r in await store.query(newest_first=False)] == ["B", "C", "A"]
        assert [r.ref_id for r in await store.query(status=TransactionStatus.SUKSES)] == ["B"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_pending_pages_in_creation_order(self, store: SQLTransactionStore) -> None:
        a = await _insert(store, "A")
        await _insert(store, "B", status=TransactionStatus.SUKSES)
        await _insert(store, "C")
        await _insert(store, "D")
        # Status writes bump updated_at but must not move a row between pages.
        await store.apply_status("A", TransactionStatus.PENDING, message="still waiting")

        first = await store.list_pending(limit=2)
        rest = await store.list_pending(limit=2, after=(first[-1].created_at, first[-1].ref_id))

        assert [r.ref_id for r in await store.list_pending()] == ["A", "C", "D"]
        assert [r.ref_id for r in first] == ["A", "C"]
        assert [r.ref_id for r in rest] == ["D"]
        assert first[0].created_at == a.created_at

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_rejects_status_field(self, store: SQLTransactionStore) -> None:
        await _insert(store)
        with pytest.raises(ValueError):
            await store.update("PPOB-1", status="Sukses")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_unknown_ref_id(self, store: SQLTransactionStore) -> None:
        with pytest.raises(TransactionNotFoundError):
            await store.update("missing", message="x")


class TestApplyStatus:
    """Test suite for first-terminal-wins transitions."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_pending_to_sukses(self, store: SQLTransactionStore) -> None:
        before = await _insert(store)

        result = await store.apply_status(
            "PPOB-1", TransactionStatus.SUKSES, sn="SN123", rc="00", message="Transaksi Sukses"
        )

        assert result.outcome is ApplyOutcome.UPDATED
        assert result.previous_status is TransactionStatus.PENDING
        assert result.record.status is TransactionStatus.SUKSES
        assert result.record.sn == "SN123"
        assert result.record.rc == "00"
        assert result.record.updated_at > before.updated_at
        assert await store.get("PPOB-1") == result.record

        events = [e.event_type for e in await store.list_events("PPOB-1")]
        assert events == ["submitted", "status_changed"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_pending_to_pending_refreshes_fields(self, store: SQLTransactionStore) -> None:
        before = await _insert(store, message="Transaksi Pending")

        result = await store.apply_status(
            "PPOB-1", TransactionStatus.PENDING, message="Masih diproses", price=10300
        )

        assert result.outcome is ApplyOutcome.STILL_PENDING
        assert result.record.message == "Masih diproses"
        assert result.record.price == 10300
        assert result.record.updated_at > before.updated_at

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_sn_ignored_unless_success(self, store: SQLTransactionStore) -> None:
        await _insert(store)
        result = await store.apply_status("PPOB-1", TransactionStatus.GAGAL, sn="SN-X", rc="02")
        assert result.record.sn is None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_same_terminal_is_noop(self, store: SQLTransactionStore) -> None:
        await _insert(store)
        first = await store.apply_status("PPOB-1", TransactionStatus.SUKSES, sn="SN123")

        again = await store.apply_status("PPOB-1", TransactionStatus.SUKSES, sn="SN999")

        assert again.outcome is ApplyOutcome.UNCHANGED
        assert again.record == first.record

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_conflicting_terminal_keeps_first(self, store: SQLTransactionStore) -> None:
        await _insert(store)
        first = await store.apply_status("PPOB-1", TransactionStatus.SUKSES, sn="SN123")

        with capture_logs() as logs:
            result = await store.apply_status("PPOB-1", TransactionStatus.GAGAL, rc="02")

        assert result.outcome is ApplyOutcome.CONFLICT
        assert result.record == first.record
        assert (await store.get("PPOB-1")).status is TransactionStatus.SUKSES

        conflict_logs = [log for log in logs if log["event"] == "transaction_status_conflict"]
        assert len(conflict_logs) == 1
        assert conflict_logs[0]["log_level"] == "error"
        assert conflict_logs[0]["stored_status"] == "Sukses"
        assert conflict_logs[0]["reported_status"] == "Gagal"

        events = [e.event_type for e in await store.list_events("PPOB-1")]
        assert events[-1] == "status_conflict"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_pending_after_terminal_is_ignored(self, store: SQLTransactionStore) -> None:
        await _insert(store)
        first = await store.apply_status("PPOB-1", TransactionStatus.GAGAL, rc="02")

        with capture_logs() as logs:
            result = await store.apply_status("PPOB-1", TransactionStatus.PENDING)

        assert result.outcome is ApplyOutcome.UNCHANGED
        assert result.record == first.record
        assert any(log["event"] == "transaction_status_regression_ignored" for log in logs)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_ref_id(self, store: SQLTransactionStore) -> None:
        with pytest.raises(TransactionNotFoundError):
            await store.apply_status("missing", TransactionStatus.SUKSES)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_racing_terminal_writes_apply_once(self, store: SQLTransactionStore) -> None:
        """A poller and a webhook reporting different outcomes: exactly one lands."""
        await _insert(store)

        results = await asyncio.gather(
            store.apply_status("PPOB-1", TransactionStatus.SUKSES, sn="SN123", source="poller"),
            store.apply_status("PPOB-1", TransactionStatus.GAGAL, rc="02", source="webhook"),
        )

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["conflict", "updated"]
        winner = next(r for r in results if r.outcome is ApplyOutcome.UPDATED)
        assert (await store.get("PPOB-1")).status is winner.record.status

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_updated_at_strictly_increases(self, store: SQLTransactionStore) -> None:
        record = await _insert(store)
        stamps = [record.updated_at]
        for message in ("a", "b", "c"):
            result = await store.apply_status("PPOB-1", TransactionStatus.PENDING, message=message)
            stamps.append(result.record.updated_at)

        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)
