"""Workload directory: running pods and their labels from the Kubernetes API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from k8gate.exceptions import UpstreamUnavailable

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

_PAGE_SIZE = 500


@dataclass(frozen=True)
class WorkloadUnit:
    """One running pod as seen by the directory."""

    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    containers: tuple[str, ...] = ()

    @property
    def identity(self) -> str:
        return f"{self.namespace}/{self.name}"


@runtime_checkable
class WorkloadDirectory(Protocol):
    """Read-only lookup of currently running workload units."""

    async def list_units(self) -> list[WorkloadUnit]:
        """Return running units in directory order.

        An empty list means "no workloads"; a failed query raises
        UpstreamUnavailable.
        """
        ...


def _string_map(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): str(v) for k, v in raw.items() if v is not None}


def parse_pod(item: Mapping[str, Any]) -> WorkloadUnit:
    """Convert a Kubernetes pod object into a WorkloadUnit."""
    metadata = item.get("metadata") or {}
    spec = item.get("spec") or {}
    containers = tuple(
        str(c.get("name", "")) for c in spec.get("containers") or [] if isinstance(c, dict)
    )
    return WorkloadUnit(
        name=str(metadata.get("name") or ""),
        namespace=str(metadata.get("namespace") or ""),
        labels=_string_map(metadata.get("labels")),
        annotations=_string_map(metadata.get("annotations")),
        containers=containers,
    )


class KubernetesWorkloadDirectory:
    """Lists running pods through the Kubernetes pods API.

    Args:
        client: HTTP client bound to the cluster endpoint with credentials.
        namespace: Restrict discovery to one namespace; empty means all.
    """

    def __init__(self, client: httpx.AsyncClient, namespace: str = "") -> None:
        self._client = client
        self._namespace = namespace

    @property
    def pods_path(self) -> str:
        if self._namespace:
            return f"/api/v1/namespaces/{self._namespace}/pods"
        return "/api/v1/pods"

    async def _get_page(self, continue_token: str | None) -> dict[str, Any]:
        params = {"fieldSelector": "status.phase=Running", "limit": str(_PAGE_SIZE)}
        if continue_token:
            params["continue"] = continue_token
        try:
            resp = await self._client.get(self.pods_path, params=params)
        except httpx.HTTPError as exc:
            msg = f"Pod listing failed: {exc}"
            raise UpstreamUnavailable(msg) from exc
        if resp.status_code != 200:
            msg = f"Pod listing returned HTTP {resp.status_code}"
            raise UpstreamUnavailable(msg)
        try:
            body = resp.json()
        except ValueError as exc:
            msg = "Pod listing returned invalid JSON"
            raise UpstreamUnavailable(msg) from exc
        if not isinstance(body, dict) or not isinstance(body.get("items", []), list):
            msg = "Pod listing returned an unexpected document"
            raise UpstreamUnavailable(msg)
        return body

    async def list_units(self) -> list[WorkloadUnit]:
        units: list[WorkloadUnit] = []
        continue_token: str | None = None
        while True:
            body = await self._get_page(continue_token)
            items = body.get("items") or []
            units.extend(parse_pod(item) for item in items if isinstance(item, dict))
            continue_token = (body.get("metadata") or {}).get("continue") or None
            if not continue_token:
                break
        logger.debug("Discovered %d running pods", len(units))
        return units
