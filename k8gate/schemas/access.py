"""Response schemas for the read-only access endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ContainerResponse(BaseModel):
    pod_name: str
    container_name: str


class CollaboratorResponse(BaseModel):
    login: str
    role_name: str
    permissions: dict[str, bool] = Field(default_factory=dict)


class ApplicationResponse(BaseModel):
    id: str
    ssh_user: str
    namespace: str
    containers: list[ContainerResponse] = Field(default_factory=list)
    users: dict[str, CollaboratorResponse] = Field(default_factory=dict)


class SnapshotResponse(BaseModel):
    """The last committed snapshot."""

    applications: dict[str, ApplicationResponse] = Field(default_factory=dict)
    users: dict[str, list[str]] = Field(default_factory=dict)


class AppSummary(BaseModel):
    id: str
    ssh_user: str
    connection_string: str
    pod: str | None = None


class AppListResponse(BaseModel):
    items: list[AppSummary]


class UserSummary(BaseModel):
    login: str
    applications: list[str]


class UserListResponse(BaseModel):
    items: list[UserSummary]
