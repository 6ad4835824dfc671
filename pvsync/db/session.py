"""Async database engines and session factories."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pvsync.core.config import get_settings

settings = get_settings()

local_engine = create_async_engine(
    settings.local_database_url,
    echo=settings.debug,
    future=True,
)

catalog_engine = create_async_engine(
    settings.catalog_database_url,
    echo=settings.debug,
    future=True,
)

local_session_maker = async_sessionmaker(
    local_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

catalog_session_maker = async_sessionmaker(
    catalog_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)
