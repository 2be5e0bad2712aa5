"""Deposit balance checker with last-known-value fallback."""
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog

from ppob_payments.core.responses import parse_balance_response
from ppob_payments.database.models import utcnow
from ppob_payments.integrations.digiflazz_client import DigiflazzClient, DigiflazzError
from ppob_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Balance:
    """Last known deposit balance of the buyer account."""

    amount: Decimal = Decimal("0")
    fetched_at: Optional[datetime] = None
    stale: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount),
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "stale": self.stale,
            "error": self.error,
        }


class BalanceChecker:
    """
    Fetches the deposit balance and keeps the last good value.

    ``check_balance`` never raises: a failed fetch marks the cached value
    stale and records the error message next to it.
    """

    def __init__(self, client: DigiflazzClient):
        self.client = client
        self._balance = Balance()

    @property
    def balance(self) -> Balance:
        return self._balance

    async def check_balance(self) -> Balance:
        """
        Refresh the balance from the gateway.

        Returns:
            Balance: Fresh value, or the previous one flagged stale
        """
        try:
            body = await self.client.check_balance()
            amount = parse_balance_response(body)
        except (DigiflazzError, ValueError) as e:
            self._balance = replace(self._balance, stale=True, error=str(e))
            logger.warning(
                "balance_check_failed",
                error=str(e),
                last_amount=str(self._balance.amount),
                last_fetched_at=self._balance.fetched_at,
            )
        else:
            self._balance = Balance(amount=amount, fetched_at=utcnow(), stale=False)
            logger.info("balance_checked", amount=str(amount))

        metrics.set_balance(float(self._balance.amount), self._balance.stale)
        return self._balance
