"""Key synchronization engine: discover, authorize, fetch, write, publish."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import replace
from typing import TYPE_CHECKING

from k8gate.exceptions import PersistenceError, RateLimited, UpstreamUnavailable
from k8gate.filesystem.account_file import render_account_file, write_account_file
from k8gate.filesystem.atomic import atomic_write_text
from k8gate.filesystem.authorized_keys import compile_authorized_keys, write_authorized_keys
from k8gate.services.application_service import (
    build_snapshot,
    collect_logins,
    discover_applications,
)
from k8gate.services.snapshot_service import SNAPSHOT_KEY

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from k8gate.config import Settings
    from k8gate.services.application_service import Application, Collaborator, Snapshot
    from k8gate.services.snapshot_service import SnapshotHolder
    from k8gate.state.base import StateStore
    from k8gate.upstream.github import CollaboratorResolver, KeyFetcher
    from k8gate.upstream.workloads import WorkloadDirectory, WorkloadUnit

logger = logging.getLogger(__name__)


class KeySyncEngine:
    """Runs one full synchronization cycle per ``sync()`` call.

    Each cycle recomputes the application set from scratch and passes it
    through the pipeline explicitly; nothing is carried over between cycles
    except the files on disk and the published snapshot.

    Failure handling:
    - discovery failure raises UpstreamUnavailable before anything is written;
    - a failing application or login degrades to empty and the cycle goes on;
    - a template render/write failure raises TemplateError and the snapshot is
      not published;
    - a persistence failure is logged and falls back to ``fallback_path``.
    """

    def __init__(
        self,
        *,
        directory: WorkloadDirectory,
        resolver: CollaboratorResolver,
        key_fetcher: KeyFetcher,
        store: StateStore,
        holder: SnapshotHolder,
        keys_dir: Path,
        account_file: Path,
        template_dir: Path,
        template_name: str,
        concurrency: int = 3,
        timeout: float = 10.0,
        fallback_path: Path | None = None,
    ) -> None:
        if concurrency < 1:
            msg = f"concurrency must be >= 1, got {concurrency}"
            raise ValueError(msg)
        self._directory = directory
        self._resolver = resolver
        self._key_fetcher = key_fetcher
        self._store = store
        self._holder = holder
        self._keys_dir = keys_dir
        self._account_file = account_file
        self._template_dir = template_dir
        self._template_name = template_name
        self._concurrency = concurrency
        self._timeout = timeout
        self._fallback_path = fallback_path

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        directory: WorkloadDirectory,
        resolver: CollaboratorResolver,
        key_fetcher: KeyFetcher,
        store: StateStore,
        holder: SnapshotHolder,
    ) -> KeySyncEngine:
        return cls(
            directory=directory,
            resolver=resolver,
            key_fetcher=key_fetcher,
            store=store,
            holder=holder,
            keys_dir=settings.directory_keys_base,
            account_file=settings.password_file,
            template_dir=settings.passwords_path,
            template_name=settings.passwords_template,
            concurrency=settings.collaborator_concurrency,
            timeout=settings.upstream_timeout_seconds,
            fallback_path=settings.state_fallback_path,
        )

    async def sync(self, units: Sequence[WorkloadUnit] | None = None) -> Snapshot:
        """Run one cycle and return the published snapshot.

        ``units`` lets the scheduler reuse the discovery it fingerprinted.

        Raises:
            UpstreamUnavailable: If workload discovery fails.
            TemplateError: If the account file cannot be rendered or written.
        """
        started = time.monotonic()
        if units is None:
            units = await self._directory.list_units()

        discovered = discover_applications(units)
        collaborators = await self._resolve_all(list(discovered.values()))
        failed = [ssh_user for ssh_user, result in collaborators.items() if result is None]
        applications = {
            ssh_user: replace(
                app, users={c.login: c for c in collaborators.get(ssh_user) or []}
            )
            for ssh_user, app in discovered.items()
        }

        logins = collect_logins(applications.values())
        keys_by_login = await self._key_fetcher.fetch(logins)

        # Render before touching any file so a broken template leaves every
        # artifact from the previous cycle in place.
        account_text = render_account_file(
            self._template_dir, self._template_name, applications.values()
        )
        files_written = self._write_key_files(applications, keys_by_login)
        write_account_file(self._account_file, account_text)

        snapshot = build_snapshot(applications, degraded=bool(failed))
        await self._publish(snapshot)

        if failed:
            logger.warning(
                "Collaborators unresolved for %d applications (%s); retrying next cycle",
                len(failed),
                ", ".join(failed),
            )
        logger.info(
            "Sync complete: %d applications, %d users, %d key files in %.2fs",
            len(applications),
            len(logins),
            files_written,
            time.monotonic() - started,
        )
        return snapshot

    async def _resolve_one(
        self, semaphore: asyncio.Semaphore, application: Application
    ) -> list[Collaborator] | None:
        """Resolve one application; ``None`` marks a failed lookup."""
        if not application.repository:
            logger.warning("Skipping collaborators for %s: no repository", application.ssh_user)
            return []
        try:
            # The timeout starts once a slot is free, not while queued.
            async with semaphore:
                async with asyncio.timeout(self._timeout):
                    return await self._resolver.resolve(application)
        except RateLimited as exc:
            logger.warning("Rate limited resolving %s: %s", application.repository, exc)
        except UpstreamUnavailable as exc:
            logger.error("Error fetching collaborators for %s: %s", application.repository, exc)
        except TimeoutError:
            logger.error(
                "Timed out fetching collaborators for %s after %.1fs",
                application.repository,
                self._timeout,
            )
        except Exception:
            logger.exception(
                "Unexpected error resolving collaborators for %s", application.repository
            )
        return None

    async def _resolve_all(
        self, applications: list[Application]
    ) -> dict[str, list[Collaborator] | None]:
        """Resolve every application with at most ``concurrency`` in flight.

        Each branch returns its own list; results are keyed by SSH user after
        the gather, so branches never share a slot.
        """
        semaphore = asyncio.Semaphore(self._concurrency)
        results = await asyncio.gather(
            *(self._resolve_one(semaphore, app) for app in applications)
        )
        return {
            app.ssh_user: result for app, result in zip(applications, results, strict=True)
        }

    def _write_key_files(
        self,
        applications: Mapping[str, Application],
        keys_by_login: Mapping[str, Sequence[str]],
    ) -> int:
        written = 0
        for app in applications.values():
            lines = compile_authorized_keys(app, keys_by_login)
            try:
                written += len(write_authorized_keys(self._keys_dir, app, lines))
            except OSError as exc:
                logger.error("Failed to write SSH keys for %s: %s", app.ssh_user, exc)
        return written

    async def _publish(self, snapshot: Snapshot) -> None:
        self._holder.update(snapshot)
        payload = snapshot.to_dict()
        try:
            await self._store.save_state(SNAPSHOT_KEY, payload)
            return
        except PersistenceError as exc:
            logger.error("Failed to store snapshot using %s: %s", self._store.name, exc)

        if self._fallback_path is None:
            logger.warning("Snapshot kept in memory only until the next successful save")
            return
        try:
            atomic_write_text(
                self._fallback_path,
                json.dumps({SNAPSHOT_KEY: payload}, indent=2, sort_keys=True),
            )
            logger.warning("Stored snapshot in fallback file %s", self._fallback_path)
        except OSError as exc:
            logger.error("Failed to write fallback snapshot %s: %s", self._fallback_path, exc)
