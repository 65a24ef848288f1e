"""Background scheduling for the compliance scanner and retention purger.

Each job runs in its own asyncio task on a fixed interval. Shutdown sets a
shared stop event, which the scanner and purger check between batches, and
then waits for both tasks to finish their current batch.
"""

import asyncio
from collections.abc import Awaitable, Callable

from clone_governance_engine.core.retention import RetentionPurger
from clone_governance_engine.core.scanner import ComplianceScanner
from clone_governance_engine.observability import get_logger

logger = get_logger(__name__)


class MaintenanceScheduler:
    """Runs periodic compliance scans and retention purges.

    Args:
        scanner: The compliance scanner.
        purger: The retention purger.
        scan_interval_seconds: Seconds between scans.
        purge_interval_seconds: Seconds between purges.
        purge_dry_run: Scheduled purges only count when True.
    """

    def __init__(
        self,
        scanner: ComplianceScanner,
        purger: RetentionPurger,
        scan_interval_seconds: float = 3600,
        purge_interval_seconds: float = 86400,
        purge_dry_run: bool = True,
    ) -> None:
        self._scanner = scanner
        self._purger = purger
        self._scan_interval = scan_interval_seconds
        self._purge_interval = purge_interval_seconds
        self._purge_dry_run = purge_dry_run
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        """Start both background loops. Calling start twice is a no-op."""
        if self.running:
            return
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(self._loop("compliance_scan", self._scan_interval, self._run_scan)),
            asyncio.create_task(self._loop("retention_purge", self._purge_interval, self._run_purge)),
        ]
        logger.info(
            "Maintenance scheduler started",
            scan_interval_seconds=self._scan_interval,
            purge_interval_seconds=self._purge_interval,
            purge_dry_run=self._purge_dry_run,
        )

    async def stop(self) -> None:
        """Signal both loops to stop and wait for them."""
        self._stop.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Maintenance scheduler stopped")

    async def _run_scan(self) -> None:
        await self._scanner.scan_compliance(stop_event=self._stop)

    async def _run_purge(self) -> None:
        await self._purger.purge(dry_run=self._purge_dry_run, stop_event=self._stop)

    async def _loop(self, name: str, interval: float, job: Callable[[], Awaitable[None]]) -> None:
        while not self._stop.is_set():
            try:
                await job()
            except Exception:
                logger.exception("Scheduled job failed", job=name)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except TimeoutError:
                continue
