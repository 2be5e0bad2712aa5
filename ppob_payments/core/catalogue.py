"""
Product catalogue: the local copy of the gateway price list.

The submitter only sends purchases for SKUs found here and enabled on both
the buyer and the seller side.
"""
import re
from typing import Any, Dict, List, Mapping, Optional

import structlog

from ppob_payments.core.responses import to_int
from ppob_payments.database.models import Product
from ppob_payments.database.store import ProductRepository
from ppob_payments.integrations.digiflazz_client import DigiflazzClient

logger = structlog.get_logger(__name__)

OPERATOR_PREFIXES: Dict[str, tuple] = {
    "Telkomsel": ("0811", "0812", "0813", "0821", "0822", "0823"),
    "XL Axiata": ("0817", "0818", "0819", "0859", "0877", "0878"),
    "Indosat Ooredoo": ("0851", "0852", "0853", "0815", "0816"),
    "Smartfren": tuple(f"088{d}" for d in range(1, 10)),
    "Tri Indonesia": ("0896", "0897", "0898", "0899"),
}
UNKNOWN_OPERATOR = "Unknown"


def normalize_phone(phone: str) -> str:
    """Strip separators and turn a ``+62``/``62`` country prefix into ``0``."""
    digits = re.sub(r"[^0-9]", "", phone or "")
    if digits.startswith("62"):
        digits = "0" + digits[2:]
    return digits


def detect_operator(phone: str) -> str:
    """
    Guess the mobile operator from an Indonesian phone number.

    Args:
        phone: Number in local (08...) or international (+628...) form

    Returns:
        str: Operator name, or ``Unknown``
    """
    prefix = normalize_phone(phone)[:4]
    for operator, prefixes in OPERATOR_PREFIXES.items():
        if prefix in prefixes:
            return operator
    return UNKNOWN_OPERATOR


def _to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def product_fields(item: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Map one price-list entry onto ``Product`` columns; None without a SKU."""
    sku = item.get("buyer_sku_code")
    if not sku:
        return None
    return {
        "buyer_sku_code": str(sku),
        "product_name": str(item.get("product_name") or sku),
        "category": str(item.get("category") or ""),
        "brand": str(item.get("brand") or ""),
        "type": str(item.get("type") or ""),
        "seller_name": str(item.get("seller_name") or ""),
        "price": to_int(item.get("price")) or 0,
        "buyer_product_status": _to_bool(item.get("buyer_product_status"), True),
        "seller_product_status": _to_bool(item.get("seller_product_status"), True),
        "unlimited_stock": _to_bool(item.get("unlimited_stock"), False),
        "stock": to_int(item.get("stock")) or 0,
        "multi": _to_bool(item.get("multi"), False),
        "start_cut_off": item.get("start_cut_off") or None,
        "end_cut_off": item.get("end_cut_off") or None,
        "desc": item.get("desc") or None,
    }


class ProductCatalogue:
    """Keeps the ``products`` table in step with the gateway price list."""

    def __init__(self, client: DigiflazzClient, repository: ProductRepository):
        self.client = client
        self.repository = repository

    async def sync_products(self, cmd: str = "prepaid") -> int:
        """
        Fetch the price list and upsert every entry.

        Returns:
            int: Number of products written

        Raises:
            DigiflazzError: If the price list cannot be fetched
        """
        items = await self.client.price_list(cmd=cmd)
        rows = []
        for item in items:
            fields = product_fields(item) if isinstance(item, Mapping) else None
            if fields:
                rows.append(fields)
        skipped = len(items) - len(rows)
        count = await self.repository.upsert_many(rows)
        logger.info("products_synced", count=count, skipped=skipped, cmd=cmd)
        return count

    async def get_enabled_product(self, product_code: str) -> Optional[Product]:
        product = await self.repository.get(product_code)
        if product is None or not product.is_enabled:
            return None
        return product

    async def list_products(
        self, category: Optional[str] = None, enabled_only: bool = True
    ) -> List[Product]:
        return await self.repository.list_products(category=category, enabled_only=enabled_only)
