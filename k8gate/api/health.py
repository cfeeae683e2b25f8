"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from k8gate.api.deps import get_scheduler, get_settings, get_snapshot_holder
from k8gate.config import Settings
from k8gate.services.scheduler import SyncScheduler
from k8gate.services.snapshot_service import SnapshotHolder

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    state_provider: str
    scheduler: str
    applications: int


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    settings: Annotated[Settings, Depends(get_settings)],
    holder: Annotated[SnapshotHolder, Depends(get_snapshot_holder)],
    scheduler: Annotated[SyncScheduler | None, Depends(get_scheduler)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers.

    Reports ``degraded`` until a snapshot has been loaded or synchronized.
    """
    if scheduler is None:
        scheduler_state = "disabled"
    elif not scheduler.is_running:
        scheduler_state = "stopped"
    else:
        scheduler_state = str(scheduler.state)

    return HealthResponse(
        status="ok" if holder.has_snapshot else "degraded",
        version="0.1.0",
        state_provider=settings.state_provider,
        scheduler=scheduler_state,
        applications=len(holder.snapshot.applications),
    )
