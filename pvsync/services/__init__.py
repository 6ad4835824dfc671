"""Service layer for the image sync engine."""

from pvsync.services.catalog_service import MetadataCatalog
from pvsync.services.image_storage import LocalImageStore
from pvsync.services.local_index import LocalImageIndex
from pvsync.services.remote_store import OneDriveClient
from pvsync.services.status import SyncStatusPublisher

__all__ = [
    "LocalImageIndex",
    "LocalImageStore",
    "MetadataCatalog",
    "OneDriveClient",
    "SyncStatusPublisher",
]
