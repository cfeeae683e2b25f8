"""SQL database state backend (SQLAlchemy async)."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from k8gate.database import ensure_sqlite_directory
from k8gate.exceptions import PersistenceError
from k8gate.models import Base, StateEntry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from k8gate.state.base import StateCallback

logger = logging.getLogger(__name__)


class DatabaseStateStore:
    """Stores each key as one row; every save runs in its own transaction."""

    name: str = "database"

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory

    async def initialize(self) -> None:
        try:
            ensure_sqlite_directory(str(self._engine.url))
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (OSError, SQLAlchemyError) as exc:
            msg = f"Cannot initialize state database: {exc}"
            raise PersistenceError(msg) from exc
        logger.info("Using state database %s", self._engine.url.render_as_string())

    async def load_state(self, key: str) -> Any | None:
        try:
            async with self._session_factory() as session:
                entry = await session.get(StateEntry, key)
        except SQLAlchemyError as exc:
            msg = f"Cannot load state {key!r}: {exc}"
            raise PersistenceError(msg) from exc
        if entry is None:
            return None
        try:
            return json.loads(entry.value)
        except ValueError as exc:
            msg = f"State entry {key!r} is not valid JSON"
            raise PersistenceError(msg) from exc

    async def save_state(self, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value, sort_keys=True)
        except (TypeError, ValueError) as exc:
            msg = f"State value for {key!r} is not JSON serializable"
            raise PersistenceError(msg) from exc

        now = datetime.now(UTC).isoformat()
        try:
            async with self._session_factory() as session, session.begin():
                entry = await session.get(StateEntry, key)
                if entry is None:
                    session.add(StateEntry(key=key, value=encoded, updated_at=now))
                else:
                    entry.value = encoded
                    entry.updated_at = now
        except SQLAlchemyError as exc:
            msg = f"Cannot save state {key!r}: {exc}"
            raise PersistenceError(msg) from exc

    def supports_realtime(self) -> bool:
        return False

    async def watch_state(self, key: str, on_change: StateCallback) -> None:
        raise NotImplementedError("The database state backend does not support watching")

    async def close(self) -> None:
        await self._engine.dispose()
