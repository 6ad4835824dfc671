"""
PV Site Image Sync - FastAPI Application

Main entry point for the FastAPI application.
"""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from pvsync.api import router as api_router
from pvsync.core.config import get_remote_drive_config, get_settings
from pvsync.core.exceptions import (
    CatalogInconsistency,
    ContentHashError,
    DownloadFailed,
    NotFoundError,
    RemoteStoreError,
    SyncError,
    TransientNetworkError,
    UploadDeferred,
    UploadFailed,
    ValidationError,
)
from pvsync.db import models_registry  # noqa: F401 - Import to register models
from pvsync.db.base import CatalogBase, LocalBase
from pvsync.db.session import (
    catalog_engine,
    catalog_session_maker,
    local_engine,
    local_session_maker,
)
from pvsync.services.catalog_service import MetadataCatalog
from pvsync.services.image_storage import LocalImageStore
from pvsync.services.local_index import LocalImageIndex
from pvsync.services.remote_store import OneDriveClient
from pvsync.workers.image_sync import ImageSyncCoordinator

settings = get_settings()

ERROR_STATUS_CODES: list[tuple[type[SyncError], int]] = [
    (ValidationError, 422),
    (ContentHashError, 422),
    (NotFoundError, 404),
    (UploadDeferred, 409),
    (CatalogInconsistency, 409),
    (UploadFailed, 502),
    (DownloadFailed, 502),
    (TransientNetworkError, 502),
    (RemoteStoreError, 502),
]


async def init_database() -> None:
    """Initialize local index and catalog tables."""
    async with local_engine.begin() as conn:
        await conn.run_sync(LocalBase.metadata.create_all)
    async with catalog_engine.begin() as conn:
        await conn.run_sync(CatalogBase.metadata.create_all)
    logger.info("Database initialized")


def build_remote_client() -> OneDriveClient:
    """Remote drive client from settings, overridden by remote.cfg when present."""
    drive_config = get_remote_drive_config()
    return OneDriveClient(
        base_url=drive_config.base_url or settings.remote_base_url,
        base_folder=drive_config.base_folder_path or settings.remote_base_folder,
        bearer_token=drive_config.bearer_token or settings.remote_bearer_token,
        timeout=settings.remote_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting PV Site Image Sync...")

    # Ensure data directories exist
    Path(settings.data_save_folder).mkdir(parents=True, exist_ok=True)
    settings.images_dir.mkdir(parents=True, exist_ok=True)

    await init_database()

    remote = build_remote_client()
    await remote.start()

    local_index = LocalImageIndex(local_session_maker)
    catalog = MetadataCatalog(catalog_session_maker)
    coordinator = ImageSyncCoordinator(
        store=LocalImageStore(settings.images_dir, settings.sync),
        index=local_index,
        catalog=catalog,
        remote=remote,
        config=settings.sync,
    )

    app.state.local_index = local_index
    app.state.catalog = catalog
    app.state.coordinator = coordinator

    # Skip the periodic timer if disabled (manual push/pull only)
    if settings.enable_sync_service:
        await coordinator.start()
    else:
        logger.info("Sync service disabled - skipping periodic image sync")

    logger.info(f"PV Site Image Sync started on port {settings.port}")

    yield

    # Shutdown
    logger.info("Shutting down PV Site Image Sync...")
    await coordinator.stop()
    await remote.close()
    await local_engine.dispose()
    await catalog_engine.dispose()
    logger.info("PV Site Image Sync stopped")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="PV Site Image Sync - evidence photo synchronization",
    lifespan=lifespan,
    docs_url="/swagger" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


@app.exception_handler(SyncError)
async def sync_exception_handler(request: Request, exc: SyncError) -> JSONResponse:
    """Map sync errors to HTTP status codes."""
    status_code = next(
        (code for cls, code in ERROR_STATUS_CODES if isinstance(exc, cls)),
        500,
    )
    logger.warning(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"Code": status_code, "Message": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"Code": 500, "Message": str(exc)},
    )


# Include API router
app.include_router(api_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pvsync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=settings.workers,
    )
