"""Base service class with common database operations."""

from typing import Any, Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

ModelType = TypeVar("ModelType", bound=DeclarativeBase)


class BaseService(Generic[ModelType]):
    """Base service with common CRUD operations.

    Each operation opens its own session so a single service instance can be
    shared by concurrently running sync workers.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        model: type[ModelType],
    ):
        self.session_maker = session_maker
        self.model = model

    async def get_by_id(self, id: Any) -> ModelType | None:
        """Get entity by primary key."""
        async with self.session_maker() as db:
            return await db.get(self.model, id)

    async def create(self, obj: ModelType) -> ModelType:
        """Create new entity."""
        async with self.session_maker() as db:
            db.add(obj)
            await db.commit()
            await db.refresh(obj)
            return obj
