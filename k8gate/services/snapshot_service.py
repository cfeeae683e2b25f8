"""Last committed snapshot and the read-only lookups derived from it."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from k8gate.exceptions import PersistenceError
from k8gate.services.application_service import Snapshot

if TYPE_CHECKING:
    from k8gate.services.application_service import Application
    from k8gate.state.base import StateStore

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "snapshot"


class SnapshotHolder:
    """Holds the last committed snapshot for read consumers.

    Reads never trigger a synchronization cycle. Safe under asyncio's
    single-threaded model: ``update`` swaps a reference in one step.
    """

    def __init__(self, snapshot: Snapshot | None = None) -> None:
        self._snapshot = snapshot

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot if self._snapshot is not None else Snapshot()

    @property
    def has_snapshot(self) -> bool:
        return self._snapshot is not None

    def update(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot

    def apply_state(self, value: Any) -> None:
        """Replace the snapshot from a persisted/watched state value."""
        if not isinstance(value, dict):
            logger.warning("Ignoring snapshot state of type %s", type(value).__name__)
            return
        try:
            self._snapshot = Snapshot.from_dict(value)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Ignoring malformed snapshot state: %s", exc)
            return
        logger.info("Loaded snapshot with %d applications", len(self._snapshot.applications))

    def find_application(self, user: str) -> Application | None:
        """Find the application addressed by SSH user or by one of its pod names."""
        applications = self.snapshot.applications
        if user in applications:
            return applications[user]
        for app in applications.values():
            if any(c.pod_name == user for c in app.containers):
                return app
        return None

    def connection_string(self, user: str) -> str | None:
        """``-n <namespace> exec <pod> -c <container>`` for ``user``, or None."""
        app = self.find_application(user)
        if app is None or app.primary_container is None:
            return None
        container = app.primary_container
        if app.ssh_user != user:
            container = next(c for c in app.containers if c.pod_name == user)
        return f"-n {app.namespace} exec {container.pod_name} -c {container.container_name}"


async def load_snapshot(store: StateStore, holder: SnapshotHolder) -> bool:
    """Warm-start ``holder`` from the store. Returns True when a snapshot was loaded."""
    try:
        value = await store.load_state(SNAPSHOT_KEY)
    except PersistenceError as exc:
        logger.error("Could not load the last snapshot from %s: %s", store.name, exc)
        return False
    if value is None:
        return False
    holder.apply_state(value)
    return holder.has_snapshot
