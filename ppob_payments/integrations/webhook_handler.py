"""
Digiflazz webhook receiver with signature verification.

Implements:
- HMAC-SHA1 verification of the ``X-Digiflazz-Signature`` header
- ``create`` events: insert the transaction if it is not stored yet
- ``update`` events: the same first-terminal-wins transition the poller uses

Webhooks are an extra input to the state machine. Polling still runs, so a
lost webhook only delays the final status.
"""
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import structlog

from ppob_payments.core.responses import Recognized, parse_transaction_data
from ppob_payments.core.signature import verify_webhook_signature
from ppob_payments.database.models import TransactionStatus
from ppob_payments.database.store import (
    ApplyOutcome,
    DuplicateTransactionError,
    SQLTransactionStore,
    TransactionNotFoundError,
)
from ppob_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class WebhookError(Exception):
    """Raised when a webhook payload cannot be processed."""

    pass


class WebhookSignatureError(WebhookError):
    """Raised when the signature header is missing or wrong."""

    pass


@dataclass(frozen=True)
class WebhookResult:
    status: str
    event_type: str
    ref_id: Optional[str] = None
    outcome: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "status": self.status,
            "event": self.event_type,
            "ref_id": self.ref_id,
            "outcome": self.outcome,
        }


EventHandler = Callable[[Mapping[str, Any]], Awaitable[WebhookResult]]


class WebhookHandler:
    """
    Handles Digiflazz webhook events.

    Features:
    - Signature verification using the shared webhook secret
    - Event type routing to handlers
    - Duplicate ``create`` deliveries acknowledged without a second insert
    """

    def __init__(self, store: SQLTransactionStore, secret: str):
        """
        Initialize webhook handler.

        Args:
            store: Transaction store
            secret: Webhook secret configured at the gateway
        """
        self.store = store
        self.secret = secret
        self.event_handlers: Dict[str, Callable[[Mapping[str, Any]], Awaitable[WebhookResult]]] = {
            "create": self._handle_create,
            "update": self._handle_update,
        }

        logger.info("webhook_handler_initialized", handlers=sorted(self.event_handlers))

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event_type: Value of the payload's ``event`` field
            handler: Async callable receiving the ``data`` object
        """
        self.event_handlers[event_type] = handler
        logger.info("webhook_handler_registered", event_type=event_type)

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the webhook signature and decode the body.

        Args:
            payload: Raw request body as bytes
            signature: ``X-Digiflazz-Signature`` header value

        Returns:
            Dict[str, Any]: Decoded JSON body

        Raises:
            WebhookSignatureError: If the signature is missing or invalid
            WebhookError: If the body is not a JSON object
        """
        if not signature:
            logger.error("webhook_signature_missing")
            raise WebhookSignatureError("No signature provided")
        if not verify_webhook_signature(payload, signature, self.secret):
            logger.error("webhook_signature_verification_failed")
            raise WebhookSignatureError("Invalid signature")

        try:
            body = json.loads(payload)
        except ValueError as e:
            raise WebhookError(f"Invalid JSON body: {e}") from e
        if not isinstance(body, dict):
            raise WebhookError("Webhook body must be a JSON object")
        return body

    async def process_event(
        self, payload: bytes, signature: Optional[str], event_header: Optional[str] = None
    ) -> WebhookResult:
        """
        Verify and process one webhook delivery.

        Args:
            payload: Raw request body
            signature: Signature header value
            event_header: ``X-Digiflazz-Event`` header, used when the body
                has no ``event`` field

        Returns:
            WebhookResult: What was done with the event

        Raises:
            WebhookSignatureError: On signature failure
            WebhookError: On malformed payloads
        """
        body = self.verify_signature(payload, signature)
        event_type = str(body.get("event") or event_header or "unknown")
        data = body.get("data")

        if not isinstance(data, Mapping):
            metrics.record_webhook_event(event_type, "invalid")
            raise WebhookError("No data field in webhook payload")

        handler = self.event_handlers.get(event_type)
        if handler is None:
            logger.info("webhook_event_ignored", event_type=event_type)
            metrics.record_webhook_event(event_type, "ignored")
            return WebhookResult(status="ignored", event_type=event_type)

        try:
            result = await handler(data)
        except WebhookError:
            metrics.record_webhook_event(event_type, "invalid")
            raise

        metrics.record_webhook_event(event_type, result.status)
        logger.info(
            "webhook_event_processed",
            event_type=event_type,
            ref_id=result.ref_id,
            status=result.status,
            outcome=result.outcome,
        )
        return result

    async def _handle_create(self, data: Mapping[str, Any]) -> WebhookResult:
        reply = parse_transaction_data(data)
        if not isinstance(reply, Recognized):
            logger.warning("webhook_unrecognized_payload", event_type="create", reason=reply.reason)
            return WebhookResult(status="unrecognized", event_type="create")
        if not (reply.ref_id and reply.customer_no and reply.product_code):
            raise WebhookError("create event needs ref_id, customer_no and buyer_sku_code")

        try:
            await self.store.insert(
                ref_id=reply.ref_id,
                customer_no=reply.customer_no,
                product_code=reply.product_code,
                status=reply.status,
                message=reply.message,
                rc=reply.rc,
                sn=reply.sn if reply.status is TransactionStatus.SUKSES else None,
                price=reply.price,
                buyer_last_saldo=reply.buyer_last_saldo,
                source="webhook",
            )
        except DuplicateTransactionError:
            return WebhookResult(status="duplicate", event_type="create", ref_id=reply.ref_id)
        return WebhookResult(status="created", event_type="create", ref_id=reply.ref_id)

    async def _handle_update(self, data: Mapping[str, Any]) -> WebhookResult:
        if not (data.get("ref_id") or data.get("buyer_tx_id")):
            raise WebhookError("Missing buyer_tx_id or ref_id")

        reply = parse_transaction_data(data)
        if not isinstance(reply, Recognized):
            ref_id = str(data.get("ref_id") or data.get("buyer_tx_id"))
            logger.warning(
                "webhook_unrecognized_payload", event_type="update", ref_id=ref_id, reason=reply.reason
            )
            return WebhookResult(status="unrecognized", event_type="update", ref_id=ref_id)

        try:
            applied = await self.store.apply_status(
                reply.ref_id,
                reply.status,
                message=reply.message,
                rc=reply.rc,
                sn=reply.sn,
                price=reply.price,
                buyer_last_saldo=reply.buyer_last_saldo,
                source="webhook",
            )
        except TransactionNotFoundError:
            logger.warning("webhook_unknown_transaction", ref_id=reply.ref_id)
            return WebhookResult(status="not_found", event_type="update", ref_id=reply.ref_id)

        await self.store.record_event(reply.ref_id, "webhook_received", "webhook", dict(data))
        if applied.outcome is ApplyOutcome.CONFLICT:
            metrics.record_status_conflict("webhook")
        return WebhookResult(
            status="applied",
            event_type="update",
            ref_id=reply.ref_id,
            outcome=applied.outcome.value,
        )
