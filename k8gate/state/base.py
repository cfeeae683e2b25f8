"""Base protocol for state persistence backends."""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    StateCallback = Callable[[Any], Awaitable[None] | None]


async def notify(on_change: StateCallback, value: Any) -> None:
    """Invoke a watch callback that may be sync or async."""
    result = on_change(value)
    if inspect.isawaitable(result):
        await result


@runtime_checkable
class StateStore(Protocol):
    """Durable key/value persistence for the last synchronized snapshot.

    Values are JSON-serializable. ``save_state`` is atomic from a reader's
    point of view: a concurrent ``load_state`` or watcher never sees a
    half-written value. Backend failures raise PersistenceError.
    """

    name: str

    async def initialize(self) -> None:
        """Prepare the backend (create tables, directories, ...)."""
        ...

    async def load_state(self, key: str) -> Any | None:
        """Return the stored value for ``key``, or None when absent."""
        ...

    async def save_state(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``."""
        ...

    def supports_realtime(self) -> bool:
        """Whether ``watch_state`` delivers push notifications."""
        ...

    async def watch_state(self, key: str, on_change: StateCallback) -> None:
        """Call ``on_change(value)`` whenever ``key`` changes. Runs until cancelled.

        Raises NotImplementedError on backends without realtime support.
        """
        ...

    async def close(self) -> None:
        """Release backend resources. Idempotent."""
        ...
