"""Local metadata index: the on-device record of every held image."""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pvsync.models.local_image import LocalImage, LocalImageMetadata
from pvsync.schemas.image import LocalImageCreate, LocalImageRecord
from pvsync.services.base_service import BaseService


class LocalImageIndex(BaseService[LocalImage]):
    """Local image index service."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        super().__init__(session_maker, LocalImage)

    async def record_local_image(self, data: LocalImageCreate) -> int:
        """Insert a local image row and return its id."""
        image = LocalImage(
            cloud_id=data.cloud_id,
            installation_id=data.installation_id,
            required_image_id=data.required_image_id,
            local_path=data.local_path,
            name=data.name,
            time_added=data.time_added,
            user_id=data.user_id,
            hash=data.hash,
            is_uploaded=data.is_uploaded and data.cloud_id is not None,
            is_active=data.is_active,
        )
        image = await self.create(image)
        return image.id

    async def get_image(self, local_id: int) -> LocalImageRecord | None:
        """Get a local image by id."""
        image = await self.get_by_id(local_id)
        if not image:
            return None
        return LocalImageRecord.model_validate(image)

    async def list_unuploaded(self) -> list[LocalImageRecord]:
        """Active images not yet bound to a catalog entry, in insertion order."""
        return await self._list(
            LocalImage.is_uploaded == False,  # noqa: E712
            LocalImage.is_active == True,  # noqa: E712
        )

    async def list_by_installation(self, installation_id: int) -> list[LocalImageRecord]:
        """Active images of an installation."""
        return await self._list(
            LocalImage.installation_id == installation_id,
            LocalImage.is_active == True,  # noqa: E712
        )

    async def list_by_required_type(self, required_image_id: int) -> list[LocalImageRecord]:
        """Active images of a required image type."""
        return await self._list(
            LocalImage.required_image_id == required_image_id,
            LocalImage.is_active == True,  # noqa: E712
        )

    async def list_by_cloud_id(self, cloud_id: int) -> list[LocalImageRecord]:
        """Active images bound to a catalog entry."""
        return await self._list(
            LocalImage.cloud_id == cloud_id,
            LocalImage.is_active == True,  # noqa: E712
        )

    async def mark_uploaded(self, local_id: int, cloud_id: int) -> None:
        """Bind a local image to a catalog entry (both columns in one update)."""
        async with self.session_maker() as db:
            await db.execute(
                update(LocalImage)
                .where(LocalImage.id == local_id)
                .values(is_uploaded=True, cloud_id=cloud_id)
            )
            await db.commit()

    async def deactivate(self, local_id: int) -> None:
        """Soft-delete a local image."""
        async with self.session_maker() as db:
            await db.execute(
                update(LocalImage)
                .where(LocalImage.id == local_id)
                .values(is_active=False)
            )
            await db.commit()

    async def add_metadata(self, local_id: int, key: str, value: str | None) -> None:
        """Attach a key/value pair to a local image."""
        async with self.session_maker() as db:
            db.add(LocalImageMetadata(image_id=local_id, key=key, value=value))
            await db.commit()

    async def get_metadata(self, local_id: int) -> dict[str, str | None]:
        """Key/value pairs attached to a local image."""
        async with self.session_maker() as db:
            result = await db.execute(
                select(LocalImageMetadata)
                .where(LocalImageMetadata.image_id == local_id)
                .order_by(LocalImageMetadata.id)
            )
            return {m.key: m.value for m in result.scalars().all()}

    async def _list(self, *conditions) -> list[LocalImageRecord]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(LocalImage).where(*conditions).order_by(LocalImage.id)
            )
            return [LocalImageRecord.model_validate(i) for i in result.scalars().all()]
