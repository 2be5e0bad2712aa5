"""
Health checks for readiness/liveness probes.

Checks:
- Database connectivity
- Freshness of the cached deposit balance
- Gateway circuit breaker state
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ppob_payments.core.balance import BalanceChecker
from ppob_payments.integrations.digiflazz_client import CircuitBreaker

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Only the database decides readiness. A stale balance or an open
    circuit marks the service ``degraded``: reads still work, and pending
    transactions are picked up again once the gateway answers.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        balance_checker: Optional[BalanceChecker] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.session_factory = session_factory
        self.balance_checker = balance_checker
        self.circuit_breaker = circuit_breaker

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            async with self.session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except (SQLAlchemyError, OSError) as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}") from e

        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    def check_balance(self) -> Dict[str, Any]:
        balance = self.balance_checker.balance
        return {
            "status": "degraded" if balance.stale else "healthy",
            "service": "balance",
            **balance.to_dict(),
        }

    def check_gateway(self) -> Dict[str, Any]:
        state = self.circuit_breaker.state
        return {
            "status": "healthy" if state == "closed" else "degraded",
            "service": "digiflazz",
            "circuit_breaker": state,
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall status (healthy, degraded or unhealthy)
        """
        checks: Dict[str, Any] = {}
        status = "healthy"

        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            checks["database"] = {
                "status": "unhealthy",
                "service": "database",
                "error": str(e),
            }
            status = "unhealthy"

        if self.balance_checker is not None:
            checks["balance"] = self.check_balance()
        if self.circuit_breaker is not None:
            checks["gateway"] = self.check_gateway()

        if status == "healthy" and any(c["status"] == "degraded" for c in checks.values()):
            status = "degraded"

        return {"status": status, "checks": checks}

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe endpoint.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe: ready unless a hard dependency is down."""
        result = await self.check_all()
        result["ready"] = result["status"] != "unhealthy"
        return result
