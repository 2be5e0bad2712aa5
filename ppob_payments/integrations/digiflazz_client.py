"""
Digiflazz API client with retry logic and error classification.

Implements:
- Signed requests for every endpoint
- Exponential backoff for idempotent reads (status, balance, price list)
- No automatic retry of purchases: a resend could double charge
- Circuit breaker pattern
"""
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ppob_payments.config import Settings, get_settings
from ppob_payments.core.signature import sign_balance, sign_price_list, sign_transaction
from ppob_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class DigiflazzErrorType(Enum):
    """Classification of gateway errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with longer backoff


class DigiflazzError(Exception):
    """Base exception for gateway errors."""

    def __init__(
        self,
        message: str,
        error_type: DigiflazzErrorType,
        status_code: Optional[int] = None,
        payload: Any = None,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize gateway error.

        Args:
            message: Error message
            error_type: Classification of error
            status_code: HTTP status, when a response was received
            payload: Decoded response body, when there was one
            original_error: Underlying httpx exception
        """
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code
        self.payload = payload
        self.original_error = original_error

    @property
    def response_received(self) -> bool:
        return self.status_code is not None


class CircuitOpenError(DigiflazzError):
    """Raised without calling the gateway while the circuit is open."""

    def __init__(self) -> None:
        super().__init__("Circuit breaker is open", DigiflazzErrorType.TRANSIENT)


class CircuitBreaker:
    """
    Circuit breaker for gateway calls.

    Stops sending requests for ``timeout`` seconds after
    ``failure_threshold`` consecutive transient failures.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    async def call(self, func: Callable[[], Awaitable[Any]]) -> Any:
        """
        Execute coroutine function with circuit breaker protection.

        Raises:
            CircuitOpenError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.monotonic() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
            else:
                raise CircuitOpenError()

        try:
            result = await func()
        except DigiflazzError as e:
            if e.error_type is DigiflazzErrorType.PERMANENT:
                # The gateway answered; it is reachable.
                self.on_success()
            else:
                self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            if self.state != "open":
                logger.warning("circuit_breaker_opened", failure_count=self.failure_count)
            self._set_state("open")

    def _set_state(self, state: str) -> None:
        if state != self.state:
            logger.info("circuit_breaker_state_changed", old=self.state, new=state)
        self.state = state
        metrics.set_circuit_breaker_state(state)


def _is_retryable(error: BaseException) -> bool:
    return (
        isinstance(error, DigiflazzError)
        and not isinstance(error, CircuitOpenError)
        and error.error_type is not DigiflazzErrorType.PERMANENT
    )


class DigiflazzClient:
    """
    Async wrapper for the Digiflazz buyer API.

    Features:
    - md5 request signing
    - Automatic retry with exponential backoff on reads
    - Circuit breaker pattern
    - Error classification carrying the response body
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        """
        Initialize Digiflazz client.

        Args:
            settings: Optional settings (defaults to the cached settings)
            http_client: Optional httpx client (tests pass a MockTransport one)
            circuit_breaker: Optional circuit breaker
        """
        self.settings = settings or get_settings()
        self.base_url = self.settings.digiflazz_base_url
        self.username = self.settings.digiflazz_username
        self._api_key = self.settings.digiflazz_api_key
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=self.settings.digiflazz_timeout_seconds,
            headers={"Content-Type": "application/json"},
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker()

        logger.info(
            "digiflazz_client_initialized",
            base_url=self.base_url,
            username=self.username,
            testing=self.settings.digiflazz_testing,
        )

    @staticmethod
    def _classify_status(status_code: int) -> DigiflazzErrorType:
        """
        Classify an HTTP error status for retry logic.

        Args:
            status_code: HTTP status code

        Returns:
            DigiflazzErrorType: Error classification
        """
        if status_code == 429:
            return DigiflazzErrorType.RATE_LIMIT
        if status_code >= 500:
            return DigiflazzErrorType.TRANSIENT
        return DigiflazzErrorType.PERMANENT

    def _retrying(self) -> AsyncRetrying:
        base = self.settings.digiflazz_retry_base_delay
        return AsyncRetrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(self.settings.digiflazz_retry_attempts),
            wait=wait_exponential(multiplier=base, min=base, max=base * 8),
            reraise=True,
        )

    async def _post(self, operation: str, path: str, payload: Dict[str, Any]) -> Any:
        """
        Send one signed request and decode the JSON body.

        Raises:
            DigiflazzError: On transport failure or non-2xx status
        """
        url = f"{self.base_url}{path}"

        async def _send() -> Any:
            start = time.monotonic()
            try:
                response = await self._http.post(url, json=payload)
            except httpx.TimeoutException as e:
                metrics.record_gateway_call(operation, "timeout", time.monotonic() - start)
                raise DigiflazzError(
                    f"Timeout calling {path}", DigiflazzErrorType.TRANSIENT, original_error=e
                ) from e
            except httpx.HTTPError as e:
                metrics.record_gateway_call(operation, "network_error", time.monotonic() - start)
                raise DigiflazzError(
                    f"Network error calling {path}: {e}",
                    DigiflazzErrorType.TRANSIENT,
                    original_error=e,
                ) from e

            duration = time.monotonic() - start
            try:
                body = response.json()
            except ValueError:
                body = None

            if response.is_error:
                metrics.record_gateway_call(operation, str(response.status_code), duration)
                raise DigiflazzError(
                    f"HTTP {response.status_code} from {path}",
                    self._classify_status(response.status_code),
                    status_code=response.status_code,
                    payload=body,
                )

            metrics.record_gateway_call(operation, "ok", duration)
            return body

        try:
            return await self.circuit_breaker.call(_send)
        except DigiflazzError as e:
            metrics.record_gateway_error(e.error_type.value)
            logger.warning(
                "digiflazz_api_error",
                operation=operation,
                error_type=e.error_type.value,
                status_code=e.status_code,
                error=str(e),
            )
            raise

    async def create_transaction(
        self,
        product_code: str,
        customer_no: str,
        ref_id: str,
        testing: Optional[bool] = None,
    ) -> Any:
        """
        Submit a purchase. Never retried.

        Args:
            product_code: buyer_sku_code
            customer_no: Destination number
            ref_id: Idempotency key
            testing: Override the configured testing flag

        Returns:
            Any: Decoded response body
        """
        payload: Dict[str, Any] = {
            "username": self.username,
            "buyer_sku_code": product_code,
            "customer_no": customer_no,
            "ref_id": ref_id,
            "sign": sign_transaction(self.username, self._api_key, ref_id),
        }
        if testing if testing is not None else self.settings.digiflazz_testing:
            payload["testing"] = True

        logger.info(
            "creating_transaction",
            ref_id=ref_id,
            product_code=product_code,
            customer_no=customer_no,
        )
        return await self._post("transaction", "/v1/transaction", payload)

    async def check_transaction_status(
        self, product_code: str, customer_no: str, ref_id: str
    ) -> Any:
        """Ask the gateway for the current state of ``ref_id``."""
        payload = {
            "username": self.username,
            "buyer_sku_code": product_code,
            "customer_no": customer_no,
            "ref_id": ref_id,
            "sign": sign_transaction(self.username, self._api_key, ref_id),
            "cmd": "status",
        }
        async for attempt in self._retrying():
            with attempt:
                return await self._post("status", "/v1/transaction", payload)

    async def check_balance(self) -> Any:
        """Fetch the deposit balance of the buyer account."""
        payload = {
            "cmd": "deposit",
            "username": self.username,
            "sign": sign_balance(self.username, self._api_key),
        }
        async for attempt in self._retrying():
            with attempt:
                return await self._post("balance", "/v1/cek-saldo", payload)

    async def price_list(self, cmd: str = "prepaid") -> List[Dict[str, Any]]:
        """
        Fetch the product price list.

        Raises:
            DigiflazzError: If the body has no product list
        """
        payload = {
            "cmd": cmd,
            "username": self.username,
            "sign": sign_price_list(self.username, self._api_key),
        }
        body: Any = None
        async for attempt in self._retrying():
            with attempt:
                body = await self._post("price_list", "/v1/price-list", payload)

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list):
            raise DigiflazzError(
                "Invalid price list response", DigiflazzErrorType.PERMANENT, payload=body
            )
        return data

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http_client:
            await self._http.aclose()
