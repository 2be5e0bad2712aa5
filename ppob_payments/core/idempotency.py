"""
ref_id generation.

The ref_id is the idempotency key shared with the gateway: Digiflazz treats
two purchase requests with the same ref_id as one transaction. A fresh
ref_id therefore means a fresh charge, so generated ids are checked
against the store before first use.
"""
import time
import uuid
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class IdempotencyError(Exception):
    """Raised when no unused ref_id could be produced."""

    pass


def _uuid_suffix() -> str:
    return uuid.uuid4().hex[:10]


class RefIdGenerator:
    """
    Produces ``<prefix>-<epoch-ms>-<random>`` ref_ids unknown to the store.

    Args:
        prefix: Leading tag, usually the shop's transaction prefix
        exists: Async predicate telling whether a ref_id is already stored
        suffix_factory: Random suffix source (uuid4 hex by default)
        max_attempts: Regeneration attempts before giving up
    """

    def __init__(
        self,
        prefix: str,
        exists: Optional[Callable[[str], Awaitable[bool]]] = None,
        suffix_factory: Callable[[], str] = _uuid_suffix,
        max_attempts: int = 5,
    ):
        self.prefix = prefix
        self._exists = exists
        self._suffix_factory = suffix_factory
        self.max_attempts = max_attempts

    def generate_key(self) -> str:
        """Build a candidate ref_id without consulting the store."""
        timestamp_ms = int(time.time() * 1000)
        return f"{self.prefix}-{timestamp_ms}-{self._suffix_factory()}"

    async def new_ref_id(self) -> str:
        """
        Return a ref_id that is not yet in the store.

        Raises:
            IdempotencyError: If every candidate collided
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.generate_key()
            if self._exists is None or not await self._exists(candidate):
                return candidate
            logger.warning("ref_id_collision", ref_id=candidate, attempt=attempt)

        raise IdempotencyError(
            f"Could not generate an unused ref_id after {self.max_attempts} attempts"
        )
