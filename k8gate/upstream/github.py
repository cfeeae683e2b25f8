"""GitHub collaborator resolution and public key retrieval."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from k8gate.exceptions import RateLimited, UpstreamUnavailable
from k8gate.services.application_service import Collaborator

if TYPE_CHECKING:
    from collections.abc import Iterable

    from k8gate.services.application_service import Application
    from k8gate.services.policy_service import AccessPolicy

logger = logging.getLogger(__name__)

# GitHub logins: alphanumerics and single hyphens, at most 39 characters.
_LOGIN_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})$")
_REPOSITORY_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")

_API_HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
}


def is_valid_login(login: str) -> bool:
    return bool(_LOGIN_RE.match(login))


def parse_key_lines(text: str) -> list[str]:
    """Split a ``.keys`` response into key lines, dropping blanks and keeping order."""
    return [line.strip() for line in text.splitlines() if line.strip()]


@runtime_checkable
class CollaboratorResolver(Protocol):
    """Resolves the collaborators allowed to access an application."""

    async def resolve(self, application: Application) -> list[Collaborator]:
        """Return allowed collaborators, or raise UpstreamUnavailable / RateLimited."""
        ...


@runtime_checkable
class KeyFetcher(Protocol):
    """Fetches each login's published public keys."""

    async def fetch(self, logins: Iterable[str]) -> dict[str, list[str]]:
        """Return login -> key lines; a failed login maps to an empty list."""
        ...


class GitHubCollaboratorResolver:
    """Queries ``/repos/{owner}/{name}/collaborators`` and applies the access policy."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        token: str,
        policy: AccessPolicy,
        api_url: str = "https://api.github.com",
    ) -> None:
        self._client = client
        self._token = token
        self._policy = policy
        self._api_url = api_url.rstrip("/")

    async def _get(self, url: str, params: dict[str, str] | None) -> httpx.Response:
        headers = {**_API_HEADERS, "Authorization": f"Bearer {self._token}"}
        try:
            resp = await self._client.get(url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            msg = f"GitHub request {url} failed: {exc}"
            raise UpstreamUnavailable(msg) from exc

        remaining = resp.headers.get("x-ratelimit-remaining")
        if remaining is not None:
            logger.debug("GitHub rate limit remaining: %s (%s)", remaining, url)
        if remaining == "0":
            logger.warning("GitHub rate limit exhausted for the configured access token")

        if resp.status_code == 429 or (resp.status_code == 403 and remaining == "0"):
            reset = resp.headers.get("x-ratelimit-reset", "")
            msg = f"GitHub rate limit exceeded ({resp.status_code}) for {url}"
            raise RateLimited(msg, reset_at=int(reset) if reset.isdigit() else None)
        if resp.status_code != 200:
            msg = f"GitHub returned HTTP {resp.status_code} for {url}"
            raise UpstreamUnavailable(msg)
        return resp

    async def list_collaborators(self, repository: str) -> list[Collaborator]:
        """Return every collaborator of ``repository``, following pagination."""
        if not _REPOSITORY_RE.match(repository):
            msg = f"Invalid repository identifier {repository!r}"
            raise UpstreamUnavailable(msg)

        url: str | None = f"{self._api_url}/repos/{repository}/collaborators"
        params: dict[str, str] | None = {"per_page": "100"}
        collaborators: list[Collaborator] = []
        while url:
            resp = await self._get(url, params)
            try:
                body = resp.json()
            except ValueError as exc:
                msg = f"GitHub returned invalid JSON for {repository}"
                raise UpstreamUnavailable(msg) from exc
            if not isinstance(body, list):
                msg = f"GitHub returned an unexpected collaborators document for {repository}"
                raise UpstreamUnavailable(msg)
            collaborators.extend(self._parse_collaborators(repository, body))
            # The next link already carries the query string.
            url = resp.links.get("next", {}).get("url")
            params = None
        return collaborators

    @staticmethod
    def _parse_collaborators(repository: str, items: list[Any]) -> list[Collaborator]:
        parsed: list[Collaborator] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            login = str(item.get("login") or "")
            if not is_valid_login(login):
                logger.warning(
                    "Skipping collaborator with invalid login %r on %s", login, repository
                )
                continue
            raw_permissions = item.get("permissions")
            permissions = (
                {str(k): bool(v) for k, v in raw_permissions.items()}
                if isinstance(raw_permissions, dict)
                else {}
            )
            parsed.append(
                Collaborator(
                    login=login,
                    role_name=str(item.get("role_name") or ""),
                    permissions=permissions,
                )
            )
        return parsed

    async def resolve(self, application: Application) -> list[Collaborator]:
        collaborators = await self.list_collaborators(application.repository)
        allowed = self._policy.filter(application.ssh_user, collaborators)
        logger.debug(
            "%s: %d of %d collaborators allowed for %s",
            application.repository,
            len(allowed),
            len(collaborators),
            application.ssh_user,
        )
        return allowed


class GitHubKeyFetcher:
    """Fetches ``https://github.com/<login>.keys`` for every login concurrently.

    Each login is bounded by ``timeout`` seconds; any failure yields no keys for
    that login and never aborts the batch.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        github_url: str = "https://github.com",
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._github_url = github_url.rstrip("/")
        self._timeout = timeout

    async def fetch_keys(self, login: str) -> list[str]:
        """Fetch one login's keys. Raises UpstreamUnavailable on failure."""
        if not is_valid_login(login):
            msg = f"Invalid GitHub login {login!r}"
            raise UpstreamUnavailable(msg)
        url = f"{self._github_url}/{login}.keys"
        try:
            resp = await self._client.get(url)
        except httpx.HTTPError as exc:
            msg = f"Key request for {login} failed: {exc}"
            raise UpstreamUnavailable(msg) from exc
        if resp.status_code != 200:
            msg = f"Key request for {login} returned HTTP {resp.status_code}"
            raise UpstreamUnavailable(msg)
        return parse_key_lines(resp.text)

    async def _fetch_one(self, login: str) -> list[str]:
        try:
            async with asyncio.timeout(self._timeout):
                keys = await self.fetch_keys(login)
        except TimeoutError:
            logger.warning("Timed out fetching keys for %s after %.1fs", login, self._timeout)
            return []
        except UpstreamUnavailable as exc:
            logger.warning("Could not fetch keys for %s: %s", login, exc)
            return []
        except Exception:
            logger.exception("Unexpected error fetching keys for %s", login)
            return []
        if not keys:
            logger.info("No public keys published by %s", login)
        return keys

    async def fetch(self, logins: Iterable[str]) -> dict[str, list[str]]:
        unique = list(dict.fromkeys(logins))
        results = await asyncio.gather(*(self._fetch_one(login) for login in unique))
        return dict(zip(unique, results, strict=True))
