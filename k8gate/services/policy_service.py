"""Two-tier SSH access policy based on collaborator role and deployment tier."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from k8gate.config import Settings
    from k8gate.services.application_service import Collaborator


@dataclass(frozen=True)
class AccessPolicy:
    """Decide which collaborator roles may SSH into an application.

    An application is a production deployment when its SSH user contains
    ``"." + production_branch`` (e.g. ``blog.production``). Production
    applications accept only ``production_roles``; everything else accepts
    ``general_roles``. A production role is trusted on every tier, so it also
    qualifies on non-production applications when it is missing from
    ``general_roles``.
    """

    general_roles: frozenset[str] = frozenset({"admin", "maintain", "write"})
    production_roles: frozenset[str] = frozenset({"admin"})
    production_branch: str = "production"

    @classmethod
    def from_settings(cls, settings: Settings) -> AccessPolicy:
        return cls(
            general_roles=settings.allowed_roles,
            production_roles=settings.allowed_prod_roles,
            production_branch=settings.production_branch,
        )

    def is_production(self, ssh_user: str) -> bool:
        if not self.production_branch:
            return False
        return f".{self.production_branch}" in ssh_user

    def is_allowed(self, ssh_user: str, role_name: str) -> bool:
        if role_name in self.production_roles:
            return True
        if self.is_production(ssh_user):
            return False
        return role_name in self.general_roles

    def filter(self, ssh_user: str, collaborators: Iterable[Collaborator]) -> list[Collaborator]:
        """Keep the collaborators allowed for ``ssh_user``, preserving order."""
        return [c for c in collaborators if self.is_allowed(ssh_user, c.role_name)]
