"""Shared HTTP clients for the Kubernetes and GitHub APIs."""

from __future__ import annotations

import ssl
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from k8gate.config import Settings

USER_AGENT = "k8gate/0.1.0"


def create_kubernetes_client(settings: Settings) -> httpx.AsyncClient:
    """Create a client bound to the cluster API endpoint with the service token."""
    verify: ssl.SSLContext | bool = True
    if settings.kubernetes_ca_file is not None:
        verify = ssl.create_default_context(cafile=str(settings.kubernetes_ca_file))
    headers = {"User-Agent": USER_AGENT}
    if settings.kubernetes_cluster_user_token:
        headers["Authorization"] = f"Bearer {settings.kubernetes_cluster_user_token}"
    return httpx.AsyncClient(
        base_url=settings.kubernetes_cluster_endpoint.rstrip("/"),
        headers=headers,
        verify=verify,
        timeout=settings.upstream_timeout_seconds,
    )


def create_github_client(settings: Settings) -> httpx.AsyncClient:
    """Create a client for GitHub.

    No default Authorization header: the token is only attached to API calls,
    never to the public keys endpoint.
    """
    return httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT},
        timeout=settings.upstream_timeout_seconds,
        follow_redirects=True,
    )
