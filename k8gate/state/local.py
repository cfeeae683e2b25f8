"""Local JSON file state backend."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from k8gate.exceptions import PersistenceError
from k8gate.filesystem.atomic import atomic_write_text

if TYPE_CHECKING:
    from pathlib import Path

    from k8gate.state.base import StateCallback

logger = logging.getLogger(__name__)


class LocalStateStore:
    """Keeps all keys in one JSON document, replaced atomically on every save."""

    name: str = "local"

    def __init__(self, state_path: Path) -> None:
        self.state_path = state_path
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Cannot create state directory {self.state_path.parent}: {exc}"
            raise PersistenceError(msg) from exc
        logger.info("Using local state file %s", self.state_path)

    def _read_all(self) -> dict[str, Any]:
        if not self.state_path.exists():
            return {}
        try:
            data = json.loads(self.state_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            msg = f"Cannot read state file {self.state_path}: {exc}"
            raise PersistenceError(msg) from exc
        if not isinstance(data, dict):
            msg = f"State file {self.state_path} does not contain a JSON object"
            raise PersistenceError(msg)
        return data

    async def load_state(self, key: str) -> Any | None:
        return self._read_all().get(key)

    async def save_state(self, key: str, value: Any) -> None:
        # Read-modify-write of the whole document; the lock keeps concurrent saves
        # in this process from dropping each other's keys.
        async with self._lock:
            data = self._read_all()
            data[key] = value
            try:
                atomic_write_text(self.state_path, json.dumps(data, indent=2, sort_keys=True))
            except (OSError, TypeError, ValueError) as exc:
                msg = f"Cannot write state file {self.state_path}: {exc}"
                raise PersistenceError(msg) from exc

    def supports_realtime(self) -> bool:
        return False

    async def watch_state(self, key: str, on_change: StateCallback) -> None:
        raise NotImplementedError("The local state backend does not support watching")

    async def close(self) -> None:
        return None
