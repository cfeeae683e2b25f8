"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from k8gate.exceptions import ConfigError

DEFAULT_TEMPLATES_DIR = Path(__file__).parent / "templates"

STATE_PROVIDERS = ("kubernetes", "local", "database")


def _split_roles(raw: str) -> frozenset[str]:
    return frozenset(role.strip() for role in raw.split(",") if role.strip())


class Settings(BaseSettings):
    """k8gate application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Core
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)
    ssh_host: str = "ssh.rabbit.ci"

    # GitHub
    access_token: str = ""
    github_api_url: str = "https://api.github.com"
    github_url: str = "https://github.com"

    # Artifacts
    directory_keys_base: Path = Path("/etc/ssh/authorized_keys.d")
    password_file: Path = Path("/etc/passwd")
    passwords_template: str = "alpine.passwords"
    passwords_path: Path = DEFAULT_TEMPLATES_DIR

    # Access policy
    allow_ssh_access_roles: str = "admin,maintain,write"
    allow_ssh_access_prod_roles: str = Field(
        default="admin",
        validation_alias=AliasChoices(
            "allow_ssh_access_prod_roles",
            "ALLOW_SSH_ACCESS_PROD_ROLES",
            "ALLOW_SSH_ACCES_PROD_ROLES",
        ),
    )
    production_branch: str = "production"

    # Scheduling
    collaborator_concurrency: int = Field(default=3, ge=1)
    upstream_timeout_seconds: float = Field(default=10.0, gt=0)
    sync_interval_seconds: float = Field(default=60.0, gt=0)
    sync_enabled: bool = True

    # Kubernetes
    kubernetes_cluster_endpoint: str = ""
    kubernetes_cluster_namespace: str = ""
    kubernetes_cluster_user_token: str = ""
    kubernetes_ca_file: Path | None = None
    workload_namespace: str = ""

    # State
    state_provider: str = "kubernetes"
    state_configmap_name: str = "k8gate-state"
    state_path: Path = Path("/var/lib/k8gate/state.json")
    state_database_url: str = "sqlite+aiosqlite:///data/k8gate-state.db"
    state_fallback_path: Path | None = None

    @property
    def allowed_roles(self) -> frozenset[str]:
        """Roles granting access to non-production applications."""
        return _split_roles(self.allow_ssh_access_roles)

    @property
    def allowed_prod_roles(self) -> frozenset[str]:
        """Roles granting access to production applications."""
        return _split_roles(self.allow_ssh_access_prod_roles)

    def validate_runtime(self) -> None:
        """Validate settings the process cannot run without.

        Read-only replicas (``sync_enabled=False``) need no GitHub token or keys
        directory. Raises ConfigError listing every violation at once.
        """
        violations: list[str] = []
        if self.sync_enabled:
            if not self.access_token:
                violations.append("ACCESS_TOKEN must be set")
            if not self.directory_keys_base.is_dir():
                violations.append(f"DIRECTORY_KEYS_BASE {self.directory_keys_base} does not exist")
            if not self.kubernetes_cluster_endpoint:
                violations.append("KUBERNETES_CLUSTER_ENDPOINT must be set to discover workloads")
        if self.state_provider not in STATE_PROVIDERS:
            violations.append(
                f"STATE_PROVIDER must be one of {', '.join(STATE_PROVIDERS)}, "
                f"got {self.state_provider!r}"
            )
        if self.state_provider == "kubernetes":
            if not self.kubernetes_cluster_endpoint:
                violations.append(
                    "KUBERNETES_CLUSTER_ENDPOINT is required by the kubernetes state provider"
                )
            if not self.kubernetes_cluster_namespace:
                violations.append(
                    "KUBERNETES_CLUSTER_NAMESPACE is required by the kubernetes state provider"
                )

        if violations:
            joined = "; ".join(violations)
            raise ConfigError(f"Invalid configuration: {joined}")
