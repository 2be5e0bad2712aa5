"""
Transaction submitter.

Orchestrates one purchase:
1. Validate input against the product catalogue
2. Pick a ref_id (caller-supplied or freshly generated)
3. Short-circuit if the ref_id is already stored
4. Send exactly one signed purchase request
5. Persist the record with the status the gateway reported

A purchase is never retried here. A resend with a fresh ref_id is a second
charge, and a resend with the same ref_id is the caller's decision.
"""
from dataclasses import dataclass
from typing import Optional

import structlog

from ppob_payments.core.catalogue import ProductCatalogue
from ppob_payments.core.idempotency import IdempotencyError, RefIdGenerator
from ppob_payments.core.responses import Recognized, parse_transaction_response
from ppob_payments.database.models import TransactionStatus
from ppob_payments.database.store import (
    DuplicateTransactionError,
    SQLTransactionStore,
    TransactionRecord,
)
from ppob_payments.integrations.digiflazz_client import DigiflazzClient, DigiflazzError
from ppob_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class SubmissionError(Exception):
    """Base exception for the submit path."""

    def __init__(self, message: str, record: Optional[TransactionRecord] = None):
        super().__init__(message)
        self.record = record


class SubmissionValidationError(SubmissionError):
    """Raised when input is rejected before any gateway call."""

    pass


@dataclass(frozen=True)
class SubmissionResult:
    record: TransactionRecord
    duplicate: bool = False


class TransactionSubmitter:
    """
    Creates transactions at the gateway and in the store.

    Args:
        client: Gateway client
        store: Transaction store
        catalogue: Product catalogue used for validation
        ref_ids: ref_id generator
    """

    def __init__(
        self,
        client: DigiflazzClient,
        store: SQLTransactionStore,
        catalogue: ProductCatalogue,
        ref_ids: RefIdGenerator,
    ):
        self.client = client
        self.store = store
        self.catalogue = catalogue
        self.ref_ids = ref_ids

    async def _validate(self, customer_no: str, product_code: str) -> None:
        if not customer_no:
            raise SubmissionValidationError("customer_no must not be empty")
        if not product_code:
            raise SubmissionValidationError("product_code must not be empty")
        if await self.catalogue.get_enabled_product(product_code) is None:
            raise SubmissionValidationError(
                f"Product {product_code} is unknown or not available"
            )

    async def _existing(self, ref_id: str) -> SubmissionResult:
        record = await self.store.get(ref_id)
        if record is None:
            raise SubmissionError(f"Transaction {ref_id} collided but cannot be read back")
        metrics.record_submission("duplicate")
        logger.info("transaction_duplicate_submission", ref_id=ref_id, status=record.status.value)
        return SubmissionResult(record=record, duplicate=True)

    async def submit(
        self,
        customer_no: str,
        product_code: str,
        ref_id: Optional[str] = None,
    ) -> SubmissionResult:
        """
        Submit a purchase to the gateway and persist it.

        Args:
            customer_no: Destination (phone number, meter id, ...)
            product_code: buyer_sku_code of an enabled product
            ref_id: Optional idempotency key; generated when omitted

        Returns:
            SubmissionResult: Stored record, ``duplicate=True`` when the
            ref_id was already known and nothing was sent

        Raises:
            SubmissionValidationError: On invalid input
            SubmissionError: When the gateway call fails or its answer
                cannot be read
        """
        customer_no = (customer_no or "").strip()
        product_code = (product_code or "").strip()
        await self._validate(customer_no, product_code)

        if ref_id:
            if await self.store.exists(ref_id):
                return await self._existing(ref_id)
        else:
            try:
                ref_id = await self.ref_ids.new_ref_id()
            except IdempotencyError as e:
                raise SubmissionError(str(e)) from e

        log = logger.bind(ref_id=ref_id, product_code=product_code, customer_no=customer_no)

        acknowledged = True
        try:
            body = await self.client.create_transaction(product_code, customer_no, ref_id)
        except DigiflazzError as e:
            if not e.response_received:
                metrics.record_submission("error")
                log.error("transaction_submit_failed", error=str(e))
                raise SubmissionError(f"Gateway unreachable: {e}") from e
            body = e.payload
            acknowledged = False
            log.warning("transaction_submit_rejected", status_code=e.status_code)

        reply = parse_transaction_response(body)
        if not isinstance(reply, Recognized):
            metrics.record_submission("error")
            log.error("transaction_submit_unrecognized", reason=reply.reason, raw=reply.raw)
            if not acknowledged:
                raise SubmissionError(f"Unrecognized gateway response: {reply.reason}")
            # The gateway accepted the ref_id; keep it Pending so the poller settles it.
            try:
                record = await self.store.insert(
                    ref_id=ref_id,
                    customer_no=customer_no,
                    product_code=product_code,
                    status=TransactionStatus.PENDING,
                    message=f"Unrecognized gateway response: {reply.reason}",
                    event_data={"unrecognized": reply.reason, "raw": body},
                )
            except DuplicateTransactionError:
                return await self._existing(ref_id)
            raise SubmissionError(
                f"Unrecognized gateway response: {reply.reason}", record=record
            )

        # A non-2xx carrying a transaction payload means the gateway refused it.
        status = reply.status if acknowledged else TransactionStatus.GAGAL
        try:
            record = await self.store.insert(
                ref_id=ref_id,
                customer_no=customer_no,
                product_code=product_code,
                status=status,
                message=reply.message,
                rc=reply.rc,
                sn=reply.sn if status is TransactionStatus.SUKSES else None,
                price=reply.price,
                buyer_last_saldo=reply.buyer_last_saldo,
                event_data={"rc": reply.rc, "message": reply.message},
            )
        except DuplicateTransactionError:
            return await self._existing(ref_id)

        metrics.record_submission(status.value)
        log.info("transaction_submitted", status=status.value, rc=reply.rc)

        if not acknowledged:
            raise SubmissionError(
                f"Gateway rejected transaction {ref_id}: {reply.message or reply.rc}",
                record=record,
            )
        return SubmissionResult(record=record)
