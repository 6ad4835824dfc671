"""
Model registry for metadata creation.

Import all models here to ensure they are registered with SQLAlchemy metadata.
"""

from pvsync.db.base import CatalogBase, LocalBase
from pvsync.models.catalog_entry import CatalogEntry
from pvsync.models.installation import Installation
from pvsync.models.local_image import LocalImage, LocalImageMetadata
from pvsync.models.required_image import RequiredImageType

__all__ = [
    "CatalogBase",
    "LocalBase",
    "CatalogEntry",
    "Installation",
    "LocalImage",
    "LocalImageMetadata",
    "RequiredImageType",
]
