"""Background workers for scheduled image synchronization."""

from pvsync.workers.image_sync import (
    ImageSyncCoordinator,
    UploadSlots,
    image_sync_lifespan,
)

__all__ = [
    "ImageSyncCoordinator",
    "UploadSlots",
    "image_sync_lifespan",
]
