"""Periodic expiry sweep.

The only thing standing between an abandoned cart and permanently locked
stock. Runs as an asyncio task inside the API process; start() in the
lifespan hook, stop() on shutdown.
"""

from __future__ import annotations

import asyncio

from core.logging_config import get_logger
from core.resilience import IdempotencyStore
from storefront.inventory import InventoryReservationService, SweepReport

logger = get_logger(__name__)


class ExpirySweeper:
    """Calls InventoryReservationService.sweep_expired every interval.

    When given the checkout idempotency store, each pass also drops its
    expired records.
    """

    def __init__(
        self,
        service: InventoryReservationService,
        interval_seconds: float = 60.0,
        idempotency: IdempotencyStore | None = None,
    ):
        self.service = service
        self.idempotency = idempotency
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()
        self.last_report: SweepReport | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> SweepReport:
        report = await self.service.sweep_expired()
        if self.idempotency is not None:
            report.keys_expired = self.idempotency.cleanup_expired()
        self.last_report = report
        return report

    async def _run(self) -> None:
        logger.info("expiry sweeper started (every %ss)", self.interval_seconds)
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception:
                # keep sweeping
                logger.exception("expiry sweep failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("expiry sweeper stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="inventory-expiry-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
