"""Kubernetes ConfigMap state backend with watch-based change notification."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from k8gate.exceptions import PersistenceError
from k8gate.state.base import notify

if TYPE_CHECKING:
    from k8gate.state.base import StateCallback

logger = logging.getLogger(__name__)

_WATCH_RETRY_SECONDS = 5.0
_WATCH_TIMEOUT_SECONDS = 300
_MANAGED_BY = {"app.kubernetes.io/managed-by": "k8gate"}


class KubernetesStateStore:
    """Stores each key as a JSON string entry of one ConfigMap.

    Saves use a JSON merge patch, which the API server applies atomically, so
    readers and watchers only ever see complete values.

    Args:
        client: HTTP client bound to the cluster endpoint with credentials.
        namespace: Namespace holding the ConfigMap.
        configmap_name: Name of the ConfigMap.
    """

    name: str = "kubernetes"

    def __init__(self, client: httpx.AsyncClient, namespace: str, configmap_name: str) -> None:
        self._client = client
        self._namespace = namespace
        self._configmap_name = configmap_name

    @property
    def collection_path(self) -> str:
        return f"/api/v1/namespaces/{self._namespace}/configmaps"

    @property
    def configmap_path(self) -> str:
        return f"{self.collection_path}/{self._configmap_name}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            msg = f"ConfigMap {method} {url} failed: {exc}"
            raise PersistenceError(msg) from exc

    async def _create(self, data: dict[str, str]) -> bool:
        """POST the ConfigMap. Returns False when another writer created it first."""
        body = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": self._configmap_name, "labels": _MANAGED_BY},
            "data": data,
        }
        resp = await self._request("POST", self.collection_path, json=body)
        if resp.status_code == 409:
            return False
        if resp.status_code not in (200, 201):
            msg = f"Creating ConfigMap {self._configmap_name} returned HTTP {resp.status_code}"
            raise PersistenceError(msg)
        return True

    async def _patch(self, data: dict[str, str]) -> httpx.Response:
        return await self._request(
            "PATCH",
            self.configmap_path,
            content=json.dumps({"data": data}),
            headers={"Content-Type": "application/merge-patch+json"},
        )

    async def _get_configmap(self) -> dict[str, Any] | None:
        resp = await self._request("GET", self.configmap_path)
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            msg = f"Reading ConfigMap {self._configmap_name} returned HTTP {resp.status_code}"
            raise PersistenceError(msg)
        try:
            configmap: dict[str, Any] = resp.json()
        except ValueError as exc:
            msg = f"ConfigMap {self._configmap_name} returned invalid JSON"
            raise PersistenceError(msg) from exc
        return configmap

    async def initialize(self) -> None:
        if await self._get_configmap() is None:
            await self._create({})
            logger.info(
                "Created state ConfigMap %s/%s", self._namespace, self._configmap_name
            )
        else:
            logger.info(
                "Using state ConfigMap %s/%s", self._namespace, self._configmap_name
            )

    @staticmethod
    def _decode(key: str, raw: str) -> Any:
        try:
            return json.loads(raw)
        except ValueError as exc:
            msg = f"State entry {key!r} is not valid JSON"
            raise PersistenceError(msg) from exc

    async def load_state(self, key: str) -> Any | None:
        configmap = await self._get_configmap()
        if configmap is None:
            return None
        raw = (configmap.get("data") or {}).get(key)
        if raw is None:
            return None
        return self._decode(key, raw)

    async def save_state(self, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value, sort_keys=True)
        except (TypeError, ValueError) as exc:
            msg = f"State value for {key!r} is not JSON serializable"
            raise PersistenceError(msg) from exc

        resp = await self._patch({key: encoded})
        if resp.status_code == 404:
            if await self._create({key: encoded}):
                return
            # Created concurrently without our entry; merge it in.
            resp = await self._patch({key: encoded})
        if resp.status_code != 200:
            msg = f"Patching ConfigMap {self._configmap_name} returned HTTP {resp.status_code}"
            raise PersistenceError(msg)

    def supports_realtime(self) -> bool:
        return True

    async def _watch_once(
        self, key: str, on_change: StateCallback, last_raw: str | None
    ) -> str | None:
        """Consume one watch stream. Returns the last delivered raw value."""
        params = {
            "watch": "true",
            "fieldSelector": f"metadata.name={self._configmap_name}",
            "timeoutSeconds": str(_WATCH_TIMEOUT_SECONDS),
        }
        async with self._client.stream(
            "GET",
            self.collection_path,
            params=params,
            timeout=httpx.Timeout(10.0, read=None),
        ) as resp:
            if resp.status_code != 200:
                msg = f"Watching ConfigMap {self._configmap_name} returned HTTP {resp.status_code}"
                raise PersistenceError(msg)
            async for line in resp.aiter_lines():
                if not line.strip():
                    continue
                try:
                    event = json.loads(line)
                except ValueError:
                    logger.warning("Ignoring malformed watch event for %s", self._configmap_name)
                    continue
                event_type = event.get("type")
                if event_type == "ERROR":
                    logger.info("ConfigMap watch expired, restarting")
                    return last_raw
                if event_type not in ("ADDED", "MODIFIED"):
                    continue
                raw = ((event.get("object") or {}).get("data") or {}).get(key)
                if raw is None or raw == last_raw:
                    continue
                last_raw = raw
                try:
                    value = self._decode(key, raw)
                except PersistenceError as exc:
                    logger.warning("Ignoring watched value: %s", exc)
                    continue
                await notify(on_change, value)
        return last_raw

    async def watch_state(self, key: str, on_change: StateCallback) -> None:
        last_raw: str | None = None
        while True:
            try:
                last_raw = await self._watch_once(key, on_change, last_raw)
            except (httpx.HTTPError, PersistenceError) as exc:
                logger.warning(
                    "ConfigMap watch interrupted: %s; retrying in %.0fs",
                    exc,
                    _WATCH_RETRY_SECONDS,
                )
                await asyncio.sleep(_WATCH_RETRY_SECONDS)

    async def close(self) -> None:
        return None
