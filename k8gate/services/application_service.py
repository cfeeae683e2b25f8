"""Application model: grouping discovered workloads into SSH-addressable units."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from k8gate.filesystem.authorized_keys import is_safe_key_name

if TYPE_CHECKING:
    from collections.abc import Iterable

    from k8gate.upstream.workloads import WorkloadUnit

logger = logging.getLogger(__name__)

NAME_LABEL = "name"
SSH_USER_LABEL = "ci.rabbit.ssh.user"
OWNER_LABELS = ("git.owner", "git_owner")
REPO_NAME_LABELS = ("git.name", "git_name")


@dataclass(frozen=True)
class Container:
    """A placement record: one pod/container backing an application."""

    pod_name: str
    container_name: str

    def to_dict(self) -> dict[str, str]:
        return {"pod_name": self.pod_name, "container_name": self.container_name}


@dataclass(frozen=True)
class Collaborator:
    """A repository collaborator and the role they hold."""

    login: str
    role_name: str
    permissions: dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "login": self.login,
            "role_name": self.role_name,
            "permissions": dict(self.permissions),
        }


@dataclass(frozen=True)
class Application:
    """One synchronization unit, keyed by its SSH user.

    ``users`` preserves the order in which collaborators were authorized; the
    authorized-keys compiler iterates it in that order.
    """

    ssh_user: str
    repository: str
    namespace: str
    containers: tuple[Container, ...] = ()
    users: dict[str, Collaborator] = field(default_factory=dict)

    @property
    def primary_container(self) -> Container | None:
        return self.containers[0] if self.containers else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.repository,
            "ssh_user": self.ssh_user,
            "namespace": self.namespace,
            "containers": [c.to_dict() for c in self.containers],
            "users": {login: c.to_dict() for login, c in self.users.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Application:
        return cls(
            ssh_user=data["ssh_user"],
            repository=data.get("id", ""),
            namespace=data.get("namespace", ""),
            containers=tuple(
                Container(pod_name=c["pod_name"], container_name=c.get("container_name", ""))
                for c in data.get("containers", [])
            ),
            users={
                login: Collaborator(
                    login=login,
                    role_name=u.get("role_name", ""),
                    permissions=dict(u.get("permissions", {})),
                )
                for login, u in data.get("users", {}).items()
            },
        )


@dataclass(frozen=True)
class Snapshot:
    """Result of one successful synchronization cycle.

    ``users`` maps each authorized login to the repositories it was granted.
    ``degraded`` marks a cycle where some collaborator lookups failed; it is
    not persisted.
    """

    applications: dict[str, Application] = field(default_factory=dict)
    users: dict[str, list[str]] = field(default_factory=dict)
    degraded: bool = field(default=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "applications": {
                ssh_user: app.to_dict() for ssh_user, app in self.applications.items()
            },
            "users": {login: list(repos) for login, repos in self.users.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        applications = {
            ssh_user: Application.from_dict(app)
            for ssh_user, app in data.get("applications", {}).items()
        }
        users = {login: list(repos) for login, repos in data.get("users", {}).items()}
        return cls(applications=applications, users=users)


def _first_label(labels: dict[str, str], names: tuple[str, ...]) -> str:
    for name in names:
        value = labels.get(name)
        if value:
            return value
    return ""


def repository_id(labels: dict[str, str]) -> str:
    """Return ``owner/name`` from a unit's git labels, or "" when either is missing."""
    owner = _first_label(labels, OWNER_LABELS)
    name = _first_label(labels, REPO_NAME_LABELS)
    if not owner or not name:
        return ""
    return f"{owner}/{name}"


def discover_applications(units: Iterable[WorkloadUnit]) -> dict[str, Application]:
    """Group qualifying workload units into applications keyed by SSH user.

    A unit qualifies only when it carries both the ``name`` and the SSH user
    label. Units sharing an SSH user become containers of one application; the
    first unit seen fixes the repository and namespace.
    """
    grouped: dict[str, dict[str, Any]] = {}
    for unit in units:
        labels = unit.labels
        ssh_user = labels.get(SSH_USER_LABEL, "")
        if not labels.get(NAME_LABEL) or not ssh_user:
            continue
        if not is_safe_key_name(ssh_user):
            logger.warning("Ignoring pod %s: unsafe SSH user label %r", unit.name, ssh_user)
            continue

        pod_name = unit.name or labels[NAME_LABEL]
        if not is_safe_key_name(pod_name):
            logger.warning("Ignoring pod with unsafe name %r for %s", pod_name, ssh_user)
            continue

        entry = grouped.get(ssh_user)
        if entry is None:
            entry = {
                "repository": repository_id(labels),
                "namespace": unit.namespace,
                "containers": [],
            }
            grouped[ssh_user] = entry
            if not entry["repository"]:
                logger.warning("Application %s has no git.owner/git.name labels", ssh_user)

        container_name = unit.containers[0] if unit.containers else ""
        entry["containers"].append(Container(pod_name=pod_name, container_name=container_name))

    return {
        ssh_user: Application(
            ssh_user=ssh_user,
            repository=entry["repository"],
            namespace=entry["namespace"],
            containers=tuple(entry["containers"]),
        )
        for ssh_user, entry in grouped.items()
    }


def collect_logins(applications: Iterable[Application]) -> list[str]:
    """Return every authorized login once, in first-seen order."""
    seen: dict[str, None] = {}
    for app in applications:
        for login in app.users:
            seen.setdefault(login, None)
    return list(seen)


def build_snapshot(
    applications: dict[str, Application], *, degraded: bool = False
) -> Snapshot:
    """Build the publishable snapshot for a set of resolved applications."""
    users: dict[str, list[str]] = {}
    for app in applications.values():
        for login in app.users:
            users.setdefault(login, []).append(app.repository)
    return Snapshot(applications=dict(applications), users=users, degraded=degraded)
