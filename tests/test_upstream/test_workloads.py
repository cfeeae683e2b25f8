"""Tests for Kubernetes workload discovery."""

from __future__ import annotations

import httpx
import pytest

from k8gate.exceptions import UpstreamUnavailable
from k8gate.upstream.workloads import KubernetesWorkloadDirectory, parse_pod


def _pod(name: str, namespace: str = "default", /, **labels: str) -> dict[str, object]:
    return {
        "metadata": {"name": name, "namespace": namespace, "labels": labels},
        "spec": {"containers": [{"name": "app"}, {"name": "sidecar"}]},
        "status": {"phase": "Running"},
    }


def _directory(handler: object, namespace: str = "") -> KubernetesWorkloadDirectory:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),  # type: ignore[arg-type]
        base_url="https://kubernetes.test",
    )
    return KubernetesWorkloadDirectory(client, namespace=namespace)


class TestParsePod:
    def test_full_pod(self) -> None:
        unit = parse_pod(_pod("blog-1", name="blog"))
        assert unit.name == "blog-1"
        assert unit.namespace == "default"
        assert unit.labels == {"name": "blog"}
        assert unit.containers == ("app", "sidecar")
        assert unit.identity == "default/blog-1"

    def test_sparse_pod(self) -> None:
        unit = parse_pod({"metadata": {"name": "x", "labels": None}})
        assert unit.labels == {}
        assert unit.containers == ()
        assert unit.namespace == ""


class TestKubernetesWorkloadDirectory:
    async def test_lists_running_pods(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"items": [_pod("a"), _pod("b", "web")]})

        units = await _directory(handler).list_units()

        assert [u.identity for u in units] == ["default/a", "web/b"]
        assert seen[0].url.path == "/api/v1/pods"
        assert seen[0].url.params["fieldSelector"] == "status.phase=Running"

    async def test_namespaced_listing(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={"items": []})

        assert await _directory(handler, namespace="apps").list_units() == []
        assert seen == ["/api/v1/namespaces/apps/pods"]

    async def test_follows_continue_token(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("continue") == "page-2":
                return httpx.Response(200, json={"items": [_pod("b")], "metadata": {}})
            return httpx.Response(
                200, json={"items": [_pod("a")], "metadata": {"continue": "page-2"}}
            )

        units = await _directory(handler).list_units()
        assert [u.name for u in units] == ["a", "b"]

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500),
            httpx.Response(403),
            httpx.Response(200, text="not json"),
            httpx.Response(200, json=["unexpected"]),
            httpx.Response(200, json={"items": "nope"}),
        ],
    )
    async def test_failures_raise(self, response: httpx.Response) -> None:
        with pytest.raises(UpstreamUnavailable):
            await _directory(lambda request: response).list_units()

    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(UpstreamUnavailable, match="timed out"):
            await _directory(handler).list_units()
