"""Sync status and reconciliation endpoints."""

from collections.abc import AsyncGenerator

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from pvsync.core.deps import Coordinator
from pvsync.schemas.sync import SyncReport, SyncStatusDTO

router = APIRouter()


@router.get("/status", response_model=SyncStatusDTO)
async def get_sync_status(coordinator: Coordinator) -> SyncStatusDTO:
    """Get the current connectivity/sync status."""
    return coordinator.get_status()


@router.get("/status/stream")
async def stream_sync_status(coordinator: Coordinator) -> StreamingResponse:
    """Stream status changes as server-sent events."""

    async def events() -> AsyncGenerator[str, None]:
        async for status in coordinator.status.listen():
            yield f"data: {status.value}\n\n"

    return StreamingResponse(events(), media_type="text/event-stream")


@router.post("/push", response_model=SyncReport)
async def push_images(coordinator: Coordinator) -> SyncReport:
    """Run a push pass now."""
    return await coordinator.sync_unuploaded_images()


@router.post("/pull", response_model=SyncReport)
async def pull_images(coordinator: Coordinator) -> SyncReport:
    """Run a pull pass now."""
    return await coordinator.sync_cloud_images()


@router.post("/session", response_model=SyncStatusDTO)
async def start_session(coordinator: Coordinator) -> SyncStatusDTO:
    """Start periodic sync for the signed-in session."""
    await coordinator.start()
    return coordinator.get_status()


@router.delete("/session", response_model=SyncStatusDTO)
async def stop_session(coordinator: Coordinator) -> SyncStatusDTO:
    """Stop periodic sync (logout or shutdown)."""
    await coordinator.stop()
    return coordinator.get_status()
