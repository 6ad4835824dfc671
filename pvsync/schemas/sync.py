"""Sync status and reconciliation report schemas."""

from enum import Enum

from pydantic import BaseModel, Field


class SyncStatus(str, Enum):
    """Connectivity status published by the sync coordinator."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    SYNCING = "syncing"


class SyncStatusDTO(BaseModel):
    """Sync status response schema."""

    status: SyncStatus
    running: bool = False
    has_completed_sync: bool = Field(False, alias="hasCompletedSync")

    model_config = {"populate_by_name": True}


class SyncReport(BaseModel):
    """Outcome counters of one reconciliation pass."""

    phase: str
    total: int = 0
    uploaded: int = 0
    bound: int = 0
    downloaded: int = 0
    skipped: int = 0
    deferred: int = 0
    failed: int = 0
    failed_ids: list[int] = Field(default_factory=list, alias="failedIds")

    model_config = {"populate_by_name": True}
