"""Shared API dependencies: settings, snapshot holder, scheduler."""

from __future__ import annotations

from fastapi import Request

from k8gate.config import Settings
from k8gate.services.scheduler import SyncScheduler
from k8gate.services.snapshot_service import SnapshotHolder


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_snapshot_holder(request: Request) -> SnapshotHolder:
    """Get the snapshot holder from app state."""
    holder: SnapshotHolder = request.app.state.snapshot_holder
    return holder


def get_scheduler(request: Request) -> SyncScheduler | None:
    """Get the sync scheduler, or None when this process only serves reads."""
    scheduler: SyncScheduler | None = getattr(request.app.state, "scheduler", None)
    return scheduler
