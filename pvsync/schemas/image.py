"""Image schemas shared by the sync engine and the API."""

from datetime import datetime

from pydantic import BaseModel, Field


class LocalImageCreate(BaseModel):
    """Fields needed to record a locally held image."""

    installation_id: int = Field(..., alias="installationId")
    required_image_id: int = Field(..., alias="requiredImageId")
    local_path: str = Field(..., alias="localPath")
    name: str | None = None
    time_added: datetime = Field(default_factory=datetime.now, alias="timeAdded")
    user_id: int = Field(..., alias="userId")
    hash: str
    cloud_id: int | None = Field(None, alias="cloudId")
    is_uploaded: bool = Field(False, alias="isUploaded")
    is_active: bool = Field(True, alias="isActive")

    model_config = {"populate_by_name": True}


class LocalImageRecord(BaseModel):
    """Local image response schema."""

    id: int
    cloud_id: int | None = Field(None, alias="cloudId")
    installation_id: int = Field(..., alias="installationId")
    required_image_id: int = Field(..., alias="requiredImageId")
    local_path: str = Field(..., alias="localPath")
    name: str | None = None
    time_added: datetime | None = Field(None, alias="timeAdded")
    user_id: int = Field(..., alias="userId")
    hash: str
    is_uploaded: bool = Field(False, alias="isUploaded")
    is_active: bool = Field(True, alias="isActive")

    model_config = {"populate_by_name": True, "from_attributes": True}

    @property
    def dedup_key(self) -> tuple[int, int, str]:
        """Scope within which identical bytes are one logical image."""
        return (self.installation_id, self.required_image_id, self.hash)


class CatalogEntryCreate(BaseModel):
    """Catalog entry creation schema."""

    installation_id: int = Field(..., alias="installationId")
    required_image_id: int = Field(..., alias="requiredImageId")
    location: str | None = None
    remote_id: str | None = Field(None, alias="remoteId")
    time_added: datetime | None = Field(None, alias="timeAdded")
    name: str | None = None
    user_id: int = Field(..., alias="userId")
    hash: str
    active: bool = True

    model_config = {"populate_by_name": True}


class CatalogEntryDTO(CatalogEntryCreate):
    """Catalog entry response schema."""

    id: int

    model_config = {"populate_by_name": True, "from_attributes": True}


class RemoteUpload(BaseModel):
    """Result of a successful remote upload."""

    remote_id: str = Field(..., alias="remoteId")
    url: str

    model_config = {"populate_by_name": True}


class RemoteFile(BaseModel):
    """File entry of an installation folder on the remote drive."""

    remote_id: str = Field(..., alias="remoteId")
    name: str
    description: str = ""
    url: str | None = None
    download_ref: str | None = Field(None, alias="downloadRef")
    created_at: datetime | None = Field(None, alias="createdAt")

    model_config = {"populate_by_name": True}


class ImageCaptureResponse(BaseModel):
    """Response of a local capture."""

    id: int
    local_path: str = Field(..., alias="localPath")
    hash: str

    model_config = {"populate_by_name": True}
