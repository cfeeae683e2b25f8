"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from k8gate.api.access import router as access_router
from k8gate.api.health import router as health_router
from k8gate.config import Settings
from k8gate.exceptions import ConfigError, PersistenceError
from k8gate.services.snapshot_service import SNAPSHOT_KEY, SnapshotHolder, load_snapshot

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    import httpx

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    _configure_logging(settings.debug)
    try:
        settings.validate_runtime()
    except ConfigError as exc:
        logger.critical("%s", exc)
        raise
    logger.info(
        "Starting k8gate (state=%s, sync=%s, debug=%s)",
        settings.state_provider,
        settings.sync_enabled,
        settings.debug,
    )

    from k8gate.state.registry import create_state_store
    from k8gate.upstream.clients import create_github_client, create_kubernetes_client

    kubernetes_client: httpx.AsyncClient | None = None
    if settings.kubernetes_cluster_endpoint:
        kubernetes_client = create_kubernetes_client(settings)

    try:
        store = create_state_store(settings, kubernetes_client)
        await store.initialize()
    except (ConfigError, PersistenceError) as exc:
        logger.critical(
            "Failed to initialize %s state backend: %s", settings.state_provider, exc
        )
        if kubernetes_client is not None:
            await kubernetes_client.aclose()
        raise
    app.state.state_store = store
    github_client = create_github_client(settings)

    holder: SnapshotHolder = app.state.snapshot_holder
    if await load_snapshot(store, holder):
        logger.info("Restored last snapshot from %s state", store.name)

    watch_task: asyncio.Task[None] | None = None
    if not settings.sync_enabled and store.supports_realtime():
        watch_task = asyncio.create_task(
            store.watch_state(SNAPSHOT_KEY, holder.apply_state), name="k8gate-snapshot-watch"
        )
        logger.info("Following snapshot updates from %s state", store.name)

    scheduler = None
    if settings.sync_enabled and kubernetes_client is not None:
        from k8gate.services.policy_service import AccessPolicy
        from k8gate.services.scheduler import SyncScheduler
        from k8gate.services.sync_service import KeySyncEngine
        from k8gate.upstream.github import GitHubCollaboratorResolver, GitHubKeyFetcher
        from k8gate.upstream.workloads import KubernetesWorkloadDirectory

        directory = KubernetesWorkloadDirectory(
            kubernetes_client, namespace=settings.workload_namespace
        )
        engine = KeySyncEngine.from_settings(
            settings,
            directory=directory,
            resolver=GitHubCollaboratorResolver(
                github_client,
                settings.access_token,
                AccessPolicy.from_settings(settings),
                api_url=settings.github_api_url,
            ),
            key_fetcher=GitHubKeyFetcher(
                github_client,
                github_url=settings.github_url,
                timeout=settings.upstream_timeout_seconds,
            ),
            store=store,
            holder=holder,
        )
        scheduler = SyncScheduler(engine, directory, settings.sync_interval_seconds)
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    if scheduler is not None:
        try:
            await scheduler.stop()
        except Exception as exc:
            logger.error("Error stopping sync scheduler: %s", exc, exc_info=True)

    if watch_task is not None:
        watch_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watch_task

    try:
        await store.close()
    except Exception as exc:
        logger.error("Error closing state backend: %s", exc, exc_info=True)

    await github_client.aclose()
    if kubernetes_client is not None:
        await kubernetes_client.aclose()

    logger.info("k8gate stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="k8gate",
        description="SSH access synchronization for running workloads",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.snapshot_holder = SnapshotHolder()
    app.state.scheduler = None

    app.include_router(health_router)
    app.include_router(access_router)

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error(
            "PersistenceError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "State backend temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "k8gate.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
