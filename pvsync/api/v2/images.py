"""Image capture, upload and delete endpoints."""

from fastapi import APIRouter, File, Form, UploadFile
from pydantic import BaseModel

from pvsync.core.deps import Catalog, Coordinator, LocalIndex
from pvsync.core.exceptions import NotFoundError
from pvsync.schemas.image import CatalogEntryDTO, ImageCaptureResponse, LocalImageRecord

router = APIRouter()


class UploadRequest(BaseModel):
    """Optional upload parameters."""

    description: str | None = None


@router.post("", response_model=ImageCaptureResponse)
async def capture_image(
    coordinator: Coordinator,
    local_index: LocalIndex,
    file: UploadFile = File(...),
    installation_id: int = Form(..., alias="installationId"),
    required_image_id: int = Form(..., alias="requiredImageId"),
    user_id: int = Form(..., alias="userId"),
    name: str | None = Form(None),
) -> ImageCaptureResponse:
    """
    Store a captured image locally.

    - **file**: Image file (jpg, jpeg, png, gif, bmp, webp)
    - **installationId**: Installation the image documents
    - **requiredImageId**: Required image type
    - **userId**: Uploader
    - **name**: Optional display name
    """
    data = await file.read()
    local_id = await coordinator.save_image_locally(
        installation_id=installation_id,
        required_image_id=required_image_id,
        data=data,
        user_id=user_id,
        file_name=file.filename,
        name=name,
    )
    record = await local_index.get_image(local_id)
    return ImageCaptureResponse(id=local_id, local_path=record.local_path, hash=record.hash)


@router.get("/local", response_model=list[LocalImageRecord])
async def get_local_images(
    installation_id: int,
    local_index: LocalIndex,
) -> list[LocalImageRecord]:
    """Get active local images of an installation."""
    return await local_index.list_by_installation(installation_id)


@router.get("/cloud", response_model=list[CatalogEntryDTO])
async def get_cloud_images(
    installation_id: int,
    catalog: Catalog,
) -> list[CatalogEntryDTO]:
    """Get active catalog entries of an installation."""
    return await catalog.get_active_entries_by_installation(installation_id)


@router.post("/{local_id}/upload", response_model=CatalogEntryDTO)
async def upload_image(
    local_id: int,
    coordinator: Coordinator,
    data: UploadRequest | None = None,
) -> CatalogEntryDTO:
    """
    Upload a local image to the cloud now instead of waiting for the next pass.

    - **local_id**: Local image ID
    - **description**: Optional description stored on the remote file
    """
    description = data.description if data else None
    return await coordinator.upload_local_image_to_cloud(local_id, description)


@router.delete("/cloud/{entry_id}")
async def delete_image(
    entry_id: int,
    coordinator: Coordinator,
    catalog: Catalog,
) -> dict:
    """
    Delete an image remotely and deactivate it locally and in the catalog.

    - **entry_id**: Catalog entry ID
    """
    if await catalog.get_entry(entry_id) is None:
        raise NotFoundError("Catalog entry not found", entry_id=entry_id)

    await coordinator.delete_image(entry_id)
    return {"status": "success"}
