"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from pvsync.services.catalog_service import MetadataCatalog
from pvsync.services.local_index import LocalImageIndex
from pvsync.workers.image_sync import ImageSyncCoordinator


def _from_state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Image sync is not initialized",
        )
    return value


def get_coordinator(request: Request) -> ImageSyncCoordinator:
    """Get the session's sync coordinator."""
    return _from_state(request, "coordinator")


def get_local_index(request: Request) -> LocalImageIndex:
    """Get the local image index."""
    return _from_state(request, "local_index")


def get_catalog(request: Request) -> MetadataCatalog:
    """Get the metadata catalog."""
    return _from_state(request, "catalog")


# Type aliases for cleaner dependency injection
Coordinator = Annotated[ImageSyncCoordinator, Depends(get_coordinator)]
LocalIndex = Annotated[LocalImageIndex, Depends(get_local_index)]
Catalog = Annotated[MetadataCatalog, Depends(get_catalog)]
