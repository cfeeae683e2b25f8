"""Application-level exception types.

Convention:
- ``ConfigError``: startup configuration is unusable. Process-fatal.
- ``UpstreamUnavailable``: one upstream call failed (transport, auth, bad
  status, malformed body). Per-item failures degrade that item to an empty
  result; a discovery failure skips the cycle until the next tick.
- ``RateLimited``: the code-hosting API refused the call because the quota is
  exhausted. Handled exactly like ``UpstreamUnavailable`` but logged on its own
  so throttling can be told apart from an outage.
- ``TemplateError``: the account file could not be rendered or written.
  Cycle-fatal; the previous file is left in place.
- ``PersistenceError``: the state backend could not load or save a value.
"""

from __future__ import annotations


class K8GateError(Exception):
    """Base class for all k8gate errors."""


class ConfigError(K8GateError):
    """Raised when required configuration is missing or invalid."""


class UpstreamUnavailable(K8GateError):
    """Raised when an upstream API call fails."""


class RateLimited(UpstreamUnavailable):
    """Raised when the code-hosting API reports an exhausted rate-limit quota.

    ``reset_at`` carries the ``X-RateLimit-Reset`` epoch seconds when the
    response included it.
    """

    def __init__(self, message: str, reset_at: int | None = None) -> None:
        super().__init__(message)
        self.reset_at = reset_at


class TemplateError(K8GateError):
    """Raised when the account file template cannot be rendered or written."""


class PersistenceError(K8GateError):
    """Raised when a state backend fails to load or save."""
