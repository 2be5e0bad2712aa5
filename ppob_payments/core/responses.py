"""
Gateway response parsing.

Digiflazz answers are only loosely shaped, so every transaction payload is
parsed into one of two branches:

- ``Recognized``: ``data.status`` is one of Pending/Sukses/Gagal
- ``Unrecognized``: anything else, kept verbatim for the logs

Callers must leave the stored record untouched on ``Unrecognized``; a
missing answer is not evidence of failure.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Union

from ppob_payments.database.models import TransactionStatus


@dataclass(frozen=True)
class Recognized:
    """A transaction payload carrying a known status."""

    status: TransactionStatus
    ref_id: Optional[str] = None
    customer_no: Optional[str] = None
    product_code: Optional[str] = None
    message: Optional[str] = None
    rc: Optional[str] = None
    sn: Optional[str] = None
    price: Optional[int] = None
    buyer_last_saldo: Optional[int] = None


@dataclass(frozen=True)
class Unrecognized:
    """A payload that could not be read as a transaction status."""

    raw: Any
    reason: str


GatewayReply = Union[Recognized, Unrecognized]


def to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return None


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text != "" else None


def parse_transaction_data(data: Any) -> GatewayReply:
    """Parse the inner ``data`` object of a transaction payload."""
    if not isinstance(data, Mapping):
        return Unrecognized(raw=data, reason="data is not an object")

    status = TransactionStatus.parse(data.get("status"))
    if status is None:
        return Unrecognized(raw=data, reason=f"unknown status {data.get('status')!r}")

    ref_id = _to_str(data.get("ref_id")) or _to_str(data.get("buyer_tx_id"))
    return Recognized(
        status=status,
        ref_id=ref_id,
        customer_no=_to_str(data.get("customer_no")),
        product_code=_to_str(data.get("buyer_sku_code")),
        message=_to_str(data.get("message")),
        rc=_to_str(data.get("rc")),
        sn=_to_str(data.get("sn")),
        price=to_int(data.get("price")),
        buyer_last_saldo=to_int(
            data.get("buyer_last_saldo", data.get("buyer_last_balance"))
        ),
    )


def parse_transaction_response(raw: Any) -> GatewayReply:
    """
    Parse a ``/v1/transaction`` response body.

    Args:
        raw: Decoded JSON body (or None when the body was not JSON)

    Returns:
        GatewayReply: Recognized or Unrecognized
    """
    if not isinstance(raw, Mapping):
        return Unrecognized(raw=raw, reason="body is not a JSON object")
    if "data" not in raw:
        return Unrecognized(raw=raw, reason="missing data field")
    return parse_transaction_data(raw["data"])


def parse_balance_response(raw: Any) -> Decimal:
    """
    Extract the deposit amount from a ``/v1/cek-saldo`` response.

    Raises:
        ValueError: If no deposit/saldo value can be read
    """
    data = raw.get("data") if isinstance(raw, Mapping) else None
    if not isinstance(data, Mapping):
        raise ValueError("Balance response has no data object")

    value = data.get("deposit", data.get("saldo"))
    if value is None or isinstance(value, bool):
        raise ValueError("Balance response has no deposit field")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Balance value {value!r} is not a number") from e
