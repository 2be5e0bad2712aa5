"""
Pydantic schemas for API request/response models.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class CreateTransactionRequest(BaseModel):
    """Request schema for submitting a purchase."""

    customer_no: str = Field(..., description="Destination number (phone, meter id, ...)")
    product_code: str = Field(..., description="Product SKU (buyer_sku_code)")
    ref_id: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Optional idempotency key; generated when omitted",
    )

    @field_validator("customer_no", "product_code")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"customer_no": "081234567890", "product_code": "PLN10"},
                {
                    "customer_no": "081234567890",
                    "product_code": "xld10",
                    "ref_id": "PPOB-1717999999999-3f2a9c1b7d",
                },
            ]
        }
    }


class TransactionResponse(BaseModel):
    """Response schema for a stored transaction."""

    ref_id: str = Field(..., description="Idempotency key shared with the gateway")
    customer_no: str = Field(..., description="Destination number")
    product_code: str = Field(..., description="Product SKU")
    status: str = Field(..., description="Pending, Sukses or Gagal")
    message: Optional[str] = Field(default=None, description="Gateway status message")
    rc: Optional[str] = Field(default=None, description="Gateway response code")
    sn: Optional[str] = Field(default=None, description="Serial number (success only)")
    price: Optional[int] = Field(default=None, description="Amount charged")
    buyer_last_saldo: Optional[int] = Field(
        default=None, description="Deposit balance after the attempt"
    )
    created_at: str = Field(..., description="Creation timestamp (ISO 8601, UTC)")
    updated_at: str = Field(..., description="Last update timestamp (ISO 8601, UTC)")
    duplicate: bool = Field(
        default=False, description="True when the ref_id was already known and nothing was sent"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "ref_id": "PPOB-1717999999999-3f2a9c1b7d",
                    "customer_no": "081234567890",
                    "product_code": "PLN10",
                    "status": "Pending",
                    "message": "Transaksi Pending",
                    "rc": "03",
                    "sn": None,
                    "price": 10250,
                    "buyer_last_saldo": 489750,
                    "created_at": "2025-06-10T10:00:00",
                    "updated_at": "2025-06-10T10:00:00",
                    "duplicate": False,
                }
            ]
        }
    }


class BalanceResponse(BaseModel):
    """Response schema for the deposit balance."""

    amount: str = Field(..., description="Last known deposit balance")
    fetched_at: Optional[str] = Field(default=None, description="Time of the last good fetch")
    stale: bool = Field(..., description="True when the last fetch failed or none succeeded")
    error: Optional[str] = Field(default=None, description="Error of the last failed fetch")


class ProductResponse(BaseModel):
    """Response schema for a catalogue product."""

    buyer_sku_code: str
    product_name: str
    category: str
    brand: str
    type: str
    price: int
    enabled: bool = Field(..., description="Buyer and seller status both active")
    unlimited_stock: bool
    stock: int
    start_cut_off: Optional[str] = None
    end_cut_off: Optional[str] = None
    desc: Optional[str] = None


class ProductSyncResponse(BaseModel):
    synced: int = Field(..., description="Products written from the price list")


class ReconciliationResponse(BaseModel):
    """Response schema for a reconciliation cycle."""

    started_at: str = Field(..., description="Cycle start (ISO 8601, UTC)")
    finished_at: Optional[str] = Field(default=None, description="Cycle end (ISO 8601, UTC)")
    skipped: bool = Field(..., description="True when pending transactions could not be read")
    checked: int = Field(..., description="Pending transactions checked")
    counts: Dict[str, int] = Field(..., description="Items per outcome")


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    success: bool = True
    status: str = Field(..., description="created, duplicate, applied, ignored, ...")
    event: str = Field(..., description="Webhook event type")
    ref_id: Optional[str] = Field(default=None, description="Transaction ref_id")
    outcome: Optional[str] = Field(default=None, description="Result of the status update")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/degraded/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
    ready: Optional[bool] = Field(default=None, description="Readiness verdict")


class OperatorResponse(BaseModel):
    phone: str
    operator: str

