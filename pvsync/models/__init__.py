"""Database models."""

from pvsync.models.catalog_entry import CatalogEntry
from pvsync.models.installation import Installation
from pvsync.models.local_image import LocalImage, LocalImageMetadata
from pvsync.models.required_image import RequiredImageType

__all__ = [
    "CatalogEntry",
    "Installation",
    "LocalImage",
    "LocalImageMetadata",
    "RequiredImageType",
]
