"""State backend registry: configuration-time selection of the active store."""

from __future__ import annotations

from typing import TYPE_CHECKING

from k8gate.database import create_engine
from k8gate.exceptions import ConfigError
from k8gate.state.database import DatabaseStateStore
from k8gate.state.kubernetes import KubernetesStateStore
from k8gate.state.local import LocalStateStore

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from k8gate.config import Settings
    from k8gate.state.base import StateStore


def _kubernetes(settings: Settings, client: httpx.AsyncClient | None) -> StateStore:
    if client is None:
        msg = "The kubernetes state provider needs a cluster API client"
        raise ConfigError(msg)
    return KubernetesStateStore(
        client,
        namespace=settings.kubernetes_cluster_namespace,
        configmap_name=settings.state_configmap_name,
    )


def _local(settings: Settings, client: httpx.AsyncClient | None) -> StateStore:
    return LocalStateStore(settings.state_path)


def _database(settings: Settings, client: httpx.AsyncClient | None) -> StateStore:
    engine, session_factory = create_engine(settings.state_database_url, echo=False)
    return DatabaseStateStore(engine, session_factory)


PROVIDERS: dict[str, Callable[[Settings, httpx.AsyncClient | None], StateStore]] = {
    "kubernetes": _kubernetes,
    "local": _local,
    "database": _database,
}


def create_state_store(
    settings: Settings, kubernetes_client: httpx.AsyncClient | None = None
) -> StateStore:
    """Create the state store selected by ``settings.state_provider``.

    Raises ConfigError if the provider is unknown.
    """
    builder = PROVIDERS.get(settings.state_provider)
    if builder is None:
        msg = f"Unknown state provider: {settings.state_provider!r}. Available: {list(PROVIDERS)}"
        raise ConfigError(msg)
    return builder(settings, kubernetes_client)


def list_providers() -> list[str]:
    """Return the names of the supported state providers."""
    return list(PROVIDERS.keys())
