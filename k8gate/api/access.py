"""Read-only access endpoints over the last committed snapshot."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse

from k8gate.api.deps import get_settings, get_snapshot_holder
from k8gate.config import Settings
from k8gate.schemas.access import (
    AppListResponse,
    AppSummary,
    SnapshotResponse,
    UserListResponse,
    UserSummary,
)
from k8gate.services.snapshot_service import SnapshotHolder

logger = logging.getLogger(__name__)

router = APIRouter(tags=["access"])


@router.get("/api/snapshot", response_model=SnapshotResponse)
async def get_snapshot(
    holder: Annotated[SnapshotHolder, Depends(get_snapshot_holder)],
) -> SnapshotResponse:
    """Return the last committed snapshot."""
    return SnapshotResponse.model_validate(holder.snapshot.to_dict())


@router.get("/apps", response_model=AppListResponse)
async def list_apps(
    holder: Annotated[SnapshotHolder, Depends(get_snapshot_holder)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AppListResponse:
    """List SSH-addressable applications with their ssh connection strings."""
    items = [
        AppSummary(
            id=app.repository,
            ssh_user=app.ssh_user,
            connection_string=f"ssh {app.ssh_user}@{settings.ssh_host}",
            pod=app.primary_container.pod_name if app.primary_container else None,
        )
        for app in holder.snapshot.applications.values()
    ]
    return AppListResponse(items=items)


@router.get("/users", response_model=UserListResponse)
async def list_users(
    holder: Annotated[SnapshotHolder, Depends(get_snapshot_holder)],
) -> UserListResponse:
    """List authorized logins and the repositories they can reach."""
    items = [
        UserSummary(login=login, applications=repos)
        for login, repos in holder.snapshot.users.items()
    ]
    return UserListResponse(items=items)


@router.get("/_cat/connection-string/{user}", response_class=PlainTextResponse)
async def connection_string(
    user: str,
    holder: Annotated[SnapshotHolder, Depends(get_snapshot_holder)],
) -> str:
    """Return the kubectl exec target for an SSH user or pod name."""
    result = holder.connection_string(user)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown user")
    logger.info("Connection string requested for %s", user)
    return result
