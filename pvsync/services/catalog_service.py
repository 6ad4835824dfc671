"""Metadata catalog: the authoritative list of cloud images."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pvsync.core.exceptions import NotFoundError
from pvsync.models.catalog_entry import CatalogEntry
from pvsync.models.installation import Installation
from pvsync.models.required_image import RequiredImageType
from pvsync.schemas.image import CatalogEntryCreate, CatalogEntryDTO
from pvsync.services.base_service import BaseService


class MetadataCatalog(BaseService[CatalogEntry]):
    """Catalog service (saved images, installations, required types)."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        super().__init__(session_maker, CatalogEntry)

    async def get_active_entries(self) -> list[CatalogEntryDTO]:
        """All active catalog entries."""
        return await self._list(CatalogEntry.active == True)  # noqa: E712

    async def get_active_entries_by_installation(
        self, installation_id: int
    ) -> list[CatalogEntryDTO]:
        """Active catalog entries of one installation."""
        return await self._list(
            CatalogEntry.active == True,  # noqa: E712
            CatalogEntry.installation_id == installation_id,
        )

    async def get_entry(self, entry_id: int) -> CatalogEntryDTO | None:
        """Get a catalog entry by id."""
        entry = await self.get_by_id(entry_id)
        if not entry:
            return None
        return CatalogEntryDTO.model_validate(entry)

    async def find_active_by_hash(
        self,
        installation_id: int,
        required_image_id: int,
        content_hash: str,
    ) -> CatalogEntryDTO | None:
        """Oldest active entry holding these bytes for an installation and type."""
        entries = await self._list(
            CatalogEntry.active == True,  # noqa: E712
            CatalogEntry.installation_id == installation_id,
            CatalogEntry.required_image_id == required_image_id,
            CatalogEntry.hash == content_hash,
        )
        return entries[0] if entries else None

    async def create_entry(self, data: CatalogEntryCreate) -> int:
        """Create a catalog entry and return its id."""
        entry = CatalogEntry(**data.model_dump())
        entry = await self.create(entry)
        return entry.id

    async def update_entry(self, data: CatalogEntryDTO) -> CatalogEntryDTO:
        """Overwrite a catalog entry (used to flip ``active``)."""
        async with self.session_maker() as db:
            entry = await db.get(CatalogEntry, data.id)
            if not entry:
                raise NotFoundError("Catalog entry not found", entry_id=data.id)

            for field, value in data.model_dump(exclude={"id"}).items():
                setattr(entry, field, value)

            await db.commit()
            await db.refresh(entry)
            return CatalogEntryDTO.model_validate(entry)

    async def get_installation(self, installation_id: int) -> Installation | None:
        """Get an installation by id."""
        async with self.session_maker() as db:
            return await db.get(Installation, installation_id)

    async def get_required_image_types(self) -> list[RequiredImageType]:
        """All required image types."""
        async with self.session_maker() as db:
            result = await db.execute(select(RequiredImageType).order_by(RequiredImageType.id))
            return list(result.scalars().all())

    async def _list(self, *conditions) -> list[CatalogEntryDTO]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(CatalogEntry).where(*conditions).order_by(CatalogEntry.id)
            )
            return [CatalogEntryDTO.model_validate(e) for e in result.scalars().all()]
