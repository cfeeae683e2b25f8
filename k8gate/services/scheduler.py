"""Change detection and periodic scheduling of synchronization cycles."""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from k8gate.exceptions import K8GateError, TemplateError, UpstreamUnavailable

if TYPE_CHECKING:
    from collections.abc import Iterable

    from k8gate.services.sync_service import KeySyncEngine
    from k8gate.upstream.workloads import WorkloadDirectory, WorkloadUnit

logger = logging.getLogger(__name__)


class SchedulerState(StrEnum):
    """Whether a synchronization cycle is in flight."""

    IDLE = "idle"
    SYNCING = "syncing"


def compute_fingerprint(units: Iterable[WorkloadUnit]) -> str:
    """SHA-256 of the sorted ``namespace/pod`` identities of ``units``."""
    identities = sorted(unit.identity for unit in units)
    return hashlib.sha256("\n".join(identities).encode("utf-8")).hexdigest()


class SyncScheduler:
    """Runs an engine cycle on each tick, but only when the workload set changed.

    The fingerprint is committed only after a complete cycle, so a failed or
    degraded cycle is retried on the next tick. A tick that fires while another
    tick is still running is skipped, not queued.
    """

    def __init__(
        self,
        engine: KeySyncEngine,
        directory: WorkloadDirectory,
        interval_seconds: float = 60.0,
    ) -> None:
        if interval_seconds <= 0:
            msg = f"interval_seconds must be > 0, got {interval_seconds}"
            raise ValueError(msg)
        self._engine = engine
        self._directory = directory
        self._interval = interval_seconds
        self._state = SchedulerState.IDLE
        self._fingerprint: str | None = None
        self._ticking = False
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def fingerprint(self) -> str | None:
        """Fingerprint of the last successfully synchronized workload set."""
        return self._fingerprint

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> bool:
        """Check for changes and sync if needed. Returns True when a cycle succeeded."""
        if self._ticking:
            logger.debug("Previous tick still running, skipping")
            return False

        self._ticking = True
        try:
            try:
                units = await self._directory.list_units()
            except UpstreamUnavailable as exc:
                logger.warning("Workload discovery failed: %s", exc)
                return False

            fingerprint = compute_fingerprint(units)
            if fingerprint == self._fingerprint:
                logger.debug("Workload set unchanged (%s), nothing to do", fingerprint[:12])
                return False

            logger.info("Workload set changed, updating SSH keys")
            self._state = SchedulerState.SYNCING
            try:
                snapshot = await self._engine.sync(units)
            except TemplateError as exc:
                logger.error("Sync aborted, account file left unchanged: %s", exc)
                return False
            except K8GateError as exc:
                logger.error("Sync failed: %s", exc)
                return False
            finally:
                self._state = SchedulerState.IDLE

            if snapshot.degraded:
                logger.warning("Sync incomplete, workload set will be retried next tick")
                return False

            self._fingerprint = fingerprint
            return True
        finally:
            self._ticking = False

    async def run_forever(self) -> None:
        """Tick every ``interval_seconds`` until cancelled."""
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Unexpected error during sync tick")
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        """Start the background loop. The first tick runs immediately."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self.run_forever(), name="k8gate-sync-scheduler")
        logger.info("Sync scheduler started (interval %.0fs)", self._interval)

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish. Idempotent."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Sync scheduler stopped")
