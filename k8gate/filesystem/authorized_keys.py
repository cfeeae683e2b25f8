"""Authorized-keys compilation and per-application/per-pod key file output."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from k8gate.filesystem.atomic import atomic_write_text

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from k8gate.services.application_service import Application

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = frozenset("/\\\x00\n\r")


def is_safe_key_name(name: str) -> bool:
    """Return True when ``name`` can be used as a single file name under the keys directory."""
    if not name or name.startswith("."):
        return False
    return not any(ch in _UNSAFE_CHARS for ch in name)


def connection_string(application: Application) -> str:
    """``<namespace> <pod> -c <container>`` for the application's first container."""
    container = application.primary_container
    pod_name = container.pod_name if container else ""
    container_name = container.container_name if container else ""
    return f"{application.namespace} {pod_name} -c {container_name}"


def compile_authorized_keys(
    application: Application, keys_by_login: Mapping[str, Sequence[str]]
) -> list[str]:
    """Compile the authorized_keys lines for one application.

    One line per (collaborator, key): collaborators in the application's
    authorization order, keys in fetch order. Each key is prefixed with an
    ``environment=`` option carrying the connection target and the login.
    """
    target = connection_string(application)
    lines: list[str] = []
    for login in application.users:
        prefix = f'environment="ENV_VARS={target};{login}"'
        for key in keys_by_login.get(login, ()):
            lines.append(f"{prefix}   {key}")
    return lines


def write_authorized_keys(
    keys_dir: Path, application: Application, lines: Sequence[str]
) -> list[Path]:
    """Write ``lines`` for the application's SSH user and each of its pods.

    Returns the written paths. An empty line set writes nothing so a transient
    upstream failure never revokes existing access.
    """
    if not lines:
        logger.warning(
            "No keys compiled for %s (%s); leaving existing key files untouched",
            application.ssh_user,
            application.repository,
        )
        return []

    content = "\n".join(lines)
    names = [application.ssh_user]
    names.extend(c.pod_name for c in application.containers if c.pod_name not in names)

    written: list[Path] = []
    for name in names:
        path = keys_dir / name
        atomic_write_text(path, content)
        written.append(path)
    logger.debug(
        "Wrote %d key lines for %s to %d files", len(lines), application.ssh_user, len(written)
    )
    return written
