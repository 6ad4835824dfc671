"""Pydantic schemas for the sync engine and the API."""

from pvsync.schemas.image import (
    CatalogEntryCreate,
    CatalogEntryDTO,
    ImageCaptureResponse,
    LocalImageCreate,
    LocalImageRecord,
    RemoteFile,
    RemoteUpload,
)
from pvsync.schemas.sync import SyncReport, SyncStatus, SyncStatusDTO

__all__ = [
    "CatalogEntryCreate",
    "CatalogEntryDTO",
    "ImageCaptureResponse",
    "LocalImageCreate",
    "LocalImageRecord",
    "RemoteFile",
    "RemoteUpload",
    "SyncReport",
    "SyncStatus",
    "SyncStatusDTO",
]
