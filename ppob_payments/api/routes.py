"""
API routes for the PPOB transaction lifecycle.
"""
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ppob_payments.core.catalogue import detect_operator, normalize_phone
from ppob_payments.core.service import PPOBService
from ppob_payments.core.submitter import SubmissionError, SubmissionValidationError
from ppob_payments.database.models import Product, TransactionStatus
from ppob_payments.database.store import StoreError, TransactionRecord
from ppob_payments.integrations.digiflazz_client import DigiflazzError
from ppob_payments.integrations.webhook_handler import WebhookError, WebhookSignatureError

from .schemas import (
    BalanceResponse,
    CreateTransactionRequest,
    HealthCheckResponse,
    OperatorResponse,
    ProductResponse,
    ProductSyncResponse,
    ReconciliationResponse,
    TransactionResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
transaction_router = APIRouter(prefix="/transactions", tags=["transactions"])
account_router = APIRouter(tags=["account"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])


def get_service(request: Request) -> PPOBService:
    """Dependency returning the service owned by the application."""
    return request.app.state.service


def _transaction(record: TransactionRecord, duplicate: bool = False) -> Dict[str, Any]:
    return {**record.to_dict(), "duplicate": duplicate}


def _product(product: Product) -> Dict[str, Any]:
    return {
        "buyer_sku_code": product.buyer_sku_code,
        "product_name": product.product_name,
        "category": product.category,
        "brand": product.brand,
        "type": product.type,
        "price": product.price,
        "enabled": product.is_enabled,
        "unlimited_stock": product.unlimited_stock,
        "stock": product.stock,
        "start_cut_off": product.start_cut_off,
        "end_cut_off": product.end_cut_off,
        "desc": product.desc,
    }


@transaction_router.post(
    "",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a purchase",
    description="Send one purchase to the gateway and store it",
)
async def create_transaction(
    request: CreateTransactionRequest,
    service: PPOBService = Depends(get_service),
) -> Dict[str, Any]:
    """
    Submit a purchase.

    Idempotent on ``ref_id``: a known ref_id returns the stored transaction
    with ``duplicate=true`` and nothing is sent to the gateway.
    """
    logger.info(
        "api_create_transaction_request",
        customer_no=request.customer_no,
        product_code=request.product_code,
        ref_id=request.ref_id,
    )
    try:
        result = await service.submit_transaction(
            request.customer_no, request.product_code, ref_id=request.ref_id
        )
    except SubmissionValidationError as e:
        logger.warning("api_create_transaction_validation_error", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SubmissionError as e:
        logger.error("api_create_transaction_error", error=str(e))
        detail: Dict[str, Any] = {"message": str(e)}
        if e.record is not None:
            detail["transaction"] = _transaction(e.record)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)

    return _transaction(result.record, duplicate=result.duplicate)


@transaction_router.get(
    "",
    response_model=List[TransactionResponse],
    summary="Transaction history",
    description="Transactions ordered by most recent update",
)
async def list_transactions(
    limit: int = Query(50, ge=1, le=500),
    status_filter: Optional[str] = Query(None, alias="status"),
    service: PPOBService = Depends(get_service),
) -> List[Dict[str, Any]]:
    parsed: Optional[TransactionStatus] = None
    if status_filter:
        parsed = TransactionStatus.parse(status_filter)
        if parsed is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown status {status_filter!r}",
            )
    try:
        records = await service.get_transaction_history(limit=limit, status=parsed)
    except StoreError as e:
        logger.error("api_list_transactions_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Transaction store unavailable",
        )
    return [_transaction(r) for r in records]


@transaction_router.get(
    "/{ref_id}",
    response_model=TransactionResponse,
    summary="Get transaction",
)
async def get_transaction(
    ref_id: str,
    service: PPOBService = Depends(get_service),
) -> Dict[str, Any]:
    record = await service.get_transaction(ref_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
    return _transaction(record)


@account_router.get(
    "/balance",
    response_model=BalanceResponse,
    summary="Deposit balance",
    description="Last known deposit balance; flagged stale when the last check failed",
)
async def get_balance(
    refresh: bool = Query(False, description="Ask the gateway before answering"),
    service: PPOBService = Depends(get_service),
) -> Dict[str, Any]:
    balance = await service.refresh_balance() if refresh else service.get_balance()
    return balance.to_dict()


@account_router.get(
    "/products",
    response_model=List[ProductResponse],
    summary="Product catalogue",
)
async def list_products(
    category: Optional[str] = None,
    include_disabled: bool = False,
    service: PPOBService = Depends(get_service),
) -> List[Dict[str, Any]]:
    products = await service.list_products(category=category, enabled_only=not include_disabled)
    return [_product(p) for p in products]


@account_router.get(
    "/operator",
    response_model=OperatorResponse,
    summary="Detect mobile operator",
)
async def get_operator(phone: str = Query(..., min_length=4)) -> Dict[str, Any]:
    return {"phone": normalize_phone(phone), "operator": detect_operator(phone)}


@webhook_router.post(
    "/digiflazz",
    response_model=WebhookResponse,
    summary="Digiflazz webhook endpoint",
    description="Handle transaction create/update events pushed by the gateway",
)
async def digiflazz_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias="X-Digiflazz-Signature"),
    event: Optional[str] = Header(None, alias="X-Digiflazz-Event"),
    service: PPOBService = Depends(get_service),
) -> Dict[str, Any]:
    """
    Handle Digiflazz webhook events.

    Verifies the HMAC signature over the raw body before parsing it.
    """
    body = await request.body()
    try:
        result = await service.webhooks.process_event(body, signature, event_header=event)
    except WebhookSignatureError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except WebhookError as e:
        logger.error("api_webhook_error", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return result.to_dict()


@admin_router.post(
    "/reconcile",
    response_model=ReconciliationResponse,
    summary="Run reconciliation",
    description="Check every pending transaction against the gateway now",
)
async def run_reconciliation(service: PPOBService = Depends(get_service)) -> Dict[str, Any]:
    report = await service.reconcile()
    logger.info("api_reconciliation_completed", counts=report.counts(), skipped=report.skipped)
    return report.to_dict()


@admin_router.post(
    "/products/sync",
    response_model=ProductSyncResponse,
    summary="Sync product catalogue",
    description="Fetch the gateway price list and upsert it",
)
async def sync_products(service: PPOBService = Depends(get_service)) -> Dict[str, Any]:
    try:
        count = await service.sync_products()
    except DigiflazzError as e:
        logger.error("api_product_sync_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Price list sync failed: {str(e)}",
        )
    return {"synced": count}


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(service: PPOBService = Depends(get_service)) -> Dict[str, Any]:
    return await service.health.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(service: PPOBService = Depends(get_service)) -> Dict[str, Any]:
    return await service.health.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness(service: PPOBService = Depends(get_service)) -> Dict[str, Any]:
    result = await service.health.readiness()
    if not result["ready"]:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
