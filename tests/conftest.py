"""Shared test fixtures and upstream fakes for k8gate."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from k8gate.config import Settings
from k8gate.exceptions import PersistenceError
from k8gate.services.application_service import Collaborator
from k8gate.services.snapshot_service import SnapshotHolder
from k8gate.services.sync_service import KeySyncEngine
from k8gate.state.local import LocalStateStore
from k8gate.upstream.workloads import WorkloadUnit

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterable
    from pathlib import Path

    from k8gate.services.application_service import Application

KEY_ALICE = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIAlice alice@laptop"
KEY_ALICE_2 = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQAlice alice@desktop"
KEY_BOB = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIBob bob@work"


def make_unit(
    name: str,
    ssh_user: str,
    owner: str = "acme",
    repo: str = "blog",
    namespace: str = "default",
    container: str = "app",
) -> WorkloadUnit:
    """Build a running pod carrying the labels discovery looks for."""
    labels = {"name": name, "ci.rabbit.ssh.user": ssh_user}
    if owner:
        labels["git.owner"] = owner
    if repo:
        labels["git.name"] = repo
    return WorkloadUnit(
        name=name,
        namespace=namespace,
        labels=labels,
        containers=(container,) if container else (),
    )


def collaborator(login: str, role_name: str = "write") -> Collaborator:
    return Collaborator(login=login, role_name=role_name, permissions={"push": True})


class FakeDirectory:
    """In-memory workload directory that counts queries."""

    def __init__(self, units: list[WorkloadUnit] | None = None) -> None:
        self.units = list(units or [])
        self.error: Exception | None = None
        self.calls = 0

    async def list_units(self) -> list[WorkloadUnit]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.units)


class FakeResolver:
    """Collaborator resolver keyed by repository id.

    A repository mapped to an exception raises it; unknown repositories
    resolve to no collaborators.
    """

    def __init__(
        self, by_repository: dict[str, list[Collaborator] | Exception] | None = None
    ) -> None:
        self.by_repository = dict(by_repository or {})
        self.calls: list[str] = []

    async def resolve(self, application: Application) -> list[Collaborator]:
        self.calls.append(application.repository)
        result = self.by_repository.get(application.repository, [])
        if isinstance(result, Exception):
            raise result
        return list(result)


class FakeKeyFetcher:
    """Key fetcher returning canned keys; logins listed in ``failing`` get no keys."""

    def __init__(
        self, keys: dict[str, list[str]] | None = None, failing: Iterable[str] = ()
    ) -> None:
        self.keys = dict(keys or {})
        self.failing = set(failing)
        self.requested: list[str] = []

    async def fetch(self, logins: Iterable[str]) -> dict[str, list[str]]:
        unique = list(dict.fromkeys(logins))
        self.requested.extend(unique)
        return {
            login: [] if login in self.failing else list(self.keys.get(login, []))
            for login in unique
        }


class FailingStore(LocalStateStore):
    """Local store whose saves always fail."""

    async def save_state(self, key: str, value: object) -> None:
        msg = "state backend is down"
        raise PersistenceError(msg)


@pytest.fixture
def tmp_keys_dir(tmp_path: Path) -> Path:
    keys_dir = tmp_path / "authorized_keys.d"
    keys_dir.mkdir()
    return keys_dir


@pytest.fixture
def test_settings(tmp_keys_dir: Path, tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        debug=True,
        access_token="test-token",
        directory_keys_base=tmp_keys_dir,
        password_file=tmp_path / "passwd",
        kubernetes_cluster_endpoint="https://kubernetes.test",
        kubernetes_cluster_namespace="ops",
        state_provider="local",
        state_path=tmp_path / "state" / "state.json",
        ssh_host="ssh.example.test",
    )


@pytest.fixture
def holder() -> SnapshotHolder:
    return SnapshotHolder()


@pytest.fixture
async def local_store(tmp_path: Path) -> LocalStateStore:
    store = LocalStateStore(tmp_path / "state" / "state.json")
    await store.initialize()
    return store


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def key_fetcher() -> FakeKeyFetcher:
    return FakeKeyFetcher()


@pytest.fixture
def sync_engine(
    test_settings: Settings,
    directory: FakeDirectory,
    resolver: FakeResolver,
    key_fetcher: FakeKeyFetcher,
    local_store: LocalStateStore,
    holder: SnapshotHolder,
) -> KeySyncEngine:
    return KeySyncEngine.from_settings(
        test_settings,
        directory=directory,
        resolver=resolver,
        key_fetcher=key_fetcher,
        store=local_store,
        holder=holder,
    )


def write_template(template_dir: Path, name: str, body: str) -> None:
    template_dir.mkdir(parents=True, exist_ok=True)
    (template_dir / f"{name}.j2").write_text(body, encoding="utf-8")


@asynccontextmanager
async def create_test_client(
    settings: Settings, holder: SnapshotHolder | None = None
) -> AsyncGenerator[AsyncClient]:
    """Create an API client over the app without running the lifespan.

    The snapshot holder is injected directly, so no cluster or GitHub access
    happens.
    """
    from k8gate.main import create_app

    app = create_app(settings)
    if holder is not None:
        app.state.snapshot_holder = holder

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

