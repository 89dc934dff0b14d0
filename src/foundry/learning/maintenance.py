"""
Learning Maintenance - periodic background upkeep of the learning store.

Each cycle:
1. Auto-links unresolved failures that match a known error signature
2. Promotes patterns that are due for crystallization, once each
3. Prunes stale entries

The maintenance loop runs as a daemon thread that wakes every interval;
a failing cycle is logged and the loop carries on.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol

from foundry.core.models import SubmissionOutcome
from foundry.learning.engine import LearningEngine
from foundry.learning.models import PatternEntry

logger = logging.getLogger(__name__)


class Promoter(Protocol):
    """Turns a pattern into a permanent, validated artifact."""

    async def crystallize(self, pattern: PatternEntry) -> SubmissionOutcome: ...


class MaintenanceStatus(Enum):
    """Status of the maintenance loop."""

    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class MaintenanceReport:
    """What one maintenance cycle did."""

    linked: list[str] = field(default_factory=list)
    crystallized: dict[str, str] = field(default_factory=dict)
    crystallization_failures: dict[str, str] = field(default_factory=dict)
    pruned: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class LearningMaintenance:
    """Runs auto-link, crystallization and pruning on a fixed interval."""

    DEFAULT_INTERVAL_SECONDS = 300.0

    def __init__(
        self,
        engine: LearningEngine,
        promoter: Promoter | None = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ):
        self._engine = engine
        self._promoter = promoter
        self._interval = interval_seconds
        self._status = MaintenanceStatus.STOPPED
        self._thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()
        self._cycle_lock = threading.Lock()
        self.last_report: MaintenanceReport | None = None

    @property
    def status(self) -> MaintenanceStatus:
        return self._status

    def start(self) -> bool:
        """
        Start the background loop.

        Returns:
            False if it was already running
        """
        if self._status != MaintenanceStatus.STOPPED:
            return False
        self._shutdown_event.clear()
        self._thread = threading.Thread(
            target=self._maintenance_loop,
            name="LearningMaintenance",
            daemon=True,
        )
        self._status = MaintenanceStatus.RUNNING
        self._thread.start()
        logger.info(f"Learning maintenance started (every {self._interval:g}s)")
        return True

    def stop(self, timeout: float = 30.0) -> None:
        """Signal the loop to exit and wait for the current cycle."""
        if self._status == MaintenanceStatus.STOPPED:
            return
        self._status = MaintenanceStatus.STOPPING
        self._shutdown_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        self._status = MaintenanceStatus.STOPPED
        logger.info("Learning maintenance stopped")

    def _maintenance_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                asyncio.run(self.run_cycle())
            except Exception as e:
                logger.exception(f"Learning maintenance cycle failed: {e}")
            self._shutdown_event.wait(self._interval)

    async def run_cycle(self, now: datetime | None = None) -> MaintenanceReport:
        """Run one full maintenance cycle."""
        report = MaintenanceReport()
        # A manual cycle never waits on the background one.
        if not self._cycle_lock.acquire(blocking=False):
            report.errors.append("A maintenance cycle is already running")
            return report
        try:
            report.linked = self._engine.auto_link()
            if self._promoter is not None:
                await self._crystallize_due(report)
            report.pruned = self._engine.prune(now)
        finally:
            self._cycle_lock.release()

        self.last_report = report
        logger.info(
            f"Maintenance cycle: {len(report.linked)} linked, "
            f"{len(report.crystallized)} crystallized, {len(report.pruned)} pruned"
        )
        return report

    async def _crystallize_due(self, report: MaintenanceReport) -> None:
        for pattern in self._engine.due_for_crystallization():
            current = self._engine.get(pattern.id)
            if not isinstance(current, PatternEntry) or current.crystallized:
                continue
            try:
                outcome = await self._promoter.crystallize(current)
            except Exception as e:
                logger.exception(f"Promoter raised for pattern {pattern.id}")
                self._engine.mark_crystallization_failed(pattern.id, f"{type(e).__name__}: {e}")
                report.crystallization_failures[pattern.id] = str(e)
                continue

            if outcome.accepted and outcome.artifact_id:
                if self._engine.mark_crystallized(pattern.id, outcome.artifact_id):
                    report.crystallized[pattern.id] = outcome.artifact_id
            else:
                error = "; ".join(outcome.verdict.errors) or f"ended in {outcome.state.value}"
                self._engine.mark_crystallization_failed(pattern.id, error)
                report.crystallization_failures[pattern.id] = error
