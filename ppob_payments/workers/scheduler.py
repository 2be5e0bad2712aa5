"""
Periodic job scheduling on the asyncio event loop.

Runs reconciliation and balance checks on their own timers, either inside
the API process (see ``PPOBService.start``) or as a standalone worker:

    ppob-worker
    python -m ppob_payments.workers.scheduler --once
"""
import asyncio
import signal
from typing import Any, Awaitable, Callable, Optional

import structlog

from ppob_payments.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


class PeriodicTask:
    """
    Calls ``func`` every ``interval_seconds`` until stopped.

    A run never overlaps the previous one: the next wait starts after the
    run returns. Exceptions from a run are logged and the loop continues.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[Any]],
        run_immediately: bool = True,
    ):
        """
        Initialize periodic task.

        Args:
            name: Name used in log events
            interval_seconds: Wait between the end of one run and the next
            func: Coroutine function to call
            run_immediately: Run once on start instead of waiting first
        """
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self.run_immediately = run_immediately
        self.runs = 0
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop."""
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")
        logger.info("periodic_task_started", task=self.name, interval=self.interval_seconds)

    async def _wait(self) -> bool:
        """Sleep for one interval; True if stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run(self) -> None:
        if not self.run_immediately and await self._wait():
            return

        while not self._stop.is_set():
            try:
                await self.func()
            except Exception as e:
                logger.exception("periodic_task_run_failed", task=self.name, error=str(e))
            self.runs += 1

            if await self._wait():
                break

        logger.info("periodic_task_stopped", task=self.name, runs=self.runs)

    async def stop(self, timeout: float = 10.0) -> None:
        """
        Request stop and wait for the in-flight run.

        Args:
            timeout: Seconds to wait before cancelling the run
        """
        if self._task is None:
            return
        self._stop.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("periodic_task_cancelled", task=self.name, timeout=timeout)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None


async def run_worker(once: bool = False) -> None:
    """
    Run reconciliation and balance checks until SIGINT/SIGTERM.

    Args:
        once: Run a single reconciliation cycle and balance check, then exit
    """
    from ppob_payments.core.service import PPOBService

    setup_logging()
    service = PPOBService.from_settings()
    await service.init_storage()

    try:
        if once:
            report = await service.reconcile()
            balance = await service.refresh_balance()
            logger.info(
                "worker_single_run_completed",
                counts=report.counts(),
                skipped=report.skipped,
                balance=str(balance.amount),
                balance_stale=balance.stale,
            )
            return

        stop = asyncio.Event()

        def signal_handler(sig: int, frame: Any) -> None:
            logger.info("worker_shutdown_signal_received", signal=sig)
            loop.call_soon_threadsafe(stop.set)

        loop = asyncio.get_running_loop()
        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        logger.info("worker_starting")
        await service.start()
        await stop.wait()
    finally:
        await service.close()
        logger.info("worker_stopped")


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="PPOB reconciliation and balance worker")
    parser.add_argument(
        "--once", action="store_true", help="Run one cycle of each job and exit"
    )
    args = parser.parse_args()

    asyncio.run(run_worker(once=args.once))


if __name__ == "__main__":
    main()
