"""Periodic sweeps: expired sessions and due work items."""

import asyncio
from typing import Awaitable, Callable, Protocol

from ..dispatch import ICompletionDispatcher
from ..logging_config import get_logger
from ..orchestrator import ISessionOrchestrator

logger = get_logger(__name__)


class IMaintenanceLoop(Protocol):
    """Background sweeps started and stopped with the application."""

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...


class MaintenanceLoop:
    """Runs cleanup and pending-item sweeps on their own intervals."""

    def __init__(
        self,
        orchestrator: ISessionOrchestrator,
        dispatcher: ICompletionDispatcher,
        cleanup_interval: float = 3600,
        pending_interval: float = 300,
    ):
        self._orchestrator = orchestrator
        self._dispatcher = dispatcher
        self._cleanup_interval = cleanup_interval
        self._pending_interval = pending_interval
        self._tasks: list[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        logger.info("Starting MaintenanceLoop")
        self._running = True
        self._tasks = [
            asyncio.create_task(self._every(self._cleanup_interval, self.run_cleanup)),
            asyncio.create_task(self._every(self._pending_interval, self.run_pending)),
        ]

    async def stop(self) -> None:
        logger.info("Stopping MaintenanceLoop")
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

    async def run_cleanup(self) -> int:
        deleted = await self._orchestrator.cleanup_expired()
        logger.info("Cleanup sweep deleted %s expired session(s)", deleted)
        return deleted

    async def run_pending(self) -> int:
        """Process due work items; returns how many calls were placed."""
        items = await self._dispatcher.list_due_work_items()
        placed = 0
        for item in items:
            if await self._dispatcher.process_work_item(item):
                placed += 1
        if items:
            logger.info("Pending sweep placed %s of %s due call(s)", placed, len(items))
        return placed

    async def _every(self, interval: float, sweep: Callable[[], Awaitable[int]]) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval)
                await sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Maintenance sweep error: %s", e, exc_info=True)
