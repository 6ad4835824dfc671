"""Pytest configuration and fixtures."""

import asyncio
from datetime import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pvsync.core.config import SyncSettings
from pvsync.core.exceptions import NotFoundError, TransientNetworkError
from pvsync.db import models_registry  # noqa: F401 - Import to register models
from pvsync.db.base import CatalogBase, LocalBase
from pvsync.main import app
from pvsync.models.installation import Installation
from pvsync.models.required_image import RequiredImageType
from pvsync.schemas.image import RemoteFile, RemoteUpload
from pvsync.services.catalog_service import MetadataCatalog
from pvsync.services.image_storage import LocalImageStore
from pvsync.services.local_index import LocalImageIndex
from pvsync.services.status import SyncStatusPublisher
from pvsync.workers.image_sync import ImageSyncCoordinator

# Small JPEG-looking payloads; content only matters for hashing
IMAGE_A = b"\xff\xd8\xff\xe0" + b"roof-a" * 32
IMAGE_B = b"\xff\xd8\xff\xe0" + b"roof-b" * 32


class FakeDrive:
    """In-memory remote drive with failure injection and concurrency tracking."""

    def __init__(self):
        self.files: dict[str, dict] = {}
        self.upload_calls = 0
        self.download_calls = 0
        self.deleted: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.upload_delay = 0.0
        # Raised by the next upload attempts, one per attempt
        self.upload_failures: list[Exception] = []
        # Uploads whose file name contains one of these always fail
        self.failing_names: set[str] = set()
        self.delete_error: Exception | None = None
        self._next_id = 1

    def add_file(self, installation_id: int, name: str, data: bytes) -> RemoteFile:
        """Put a file on the drive directly (someone else uploaded it)."""
        remote_id = f"item-{self._next_id}"
        self._next_id += 1
        self.files[remote_id] = {
            "installation_id": installation_id,
            "name": name,
            "data": data,
            "description": "",
            "url": f"https://drive.test/FVE/{installation_id}/{remote_id}/{name}",
            "created_at": datetime.now(),
        }
        return self._to_remote_file(remote_id)

    async def upload_file(
        self,
        installation_id: int,
        data: bytes,
        suggested_name: str,
        description: str | None = None,
    ) -> RemoteUpload:
        self.upload_calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.upload_delay)
            if any(name in suggested_name for name in self.failing_names):
                raise TransientNetworkError("Simulated outage", name=suggested_name)
            if self.upload_failures:
                raise self.upload_failures.pop(0)

            remote_file = self.add_file(installation_id, suggested_name, data)
            self.files[remote_file.remote_id]["description"] = description or ""
            return RemoteUpload(remote_id=remote_file.remote_id, url=remote_file.url)
        finally:
            self.in_flight -= 1

    async def list_files(self, installation_id: int) -> list[RemoteFile]:
        return [
            self._to_remote_file(remote_id)
            for remote_id, f in self.files.items()
            if f["installation_id"] == installation_id
        ]

    async def download_file(self, download_ref: str) -> bytes:
        self.download_calls += 1
        remote_id = download_ref.rsplit("/", 1)[-1]
        if remote_id not in self.files:
            raise NotFoundError("Remote object not found", url=download_ref)
        return self.files[remote_id]["data"]

    async def delete_file(self, remote_id: str) -> None:
        if self.delete_error:
            raise self.delete_error
        if remote_id not in self.files:
            raise NotFoundError("Remote object not found", remote_id=remote_id)
        del self.files[remote_id]
        self.deleted.append(remote_id)

    def _to_remote_file(self, remote_id: str) -> RemoteFile:
        f = self.files[remote_id]
        return RemoteFile(
            remote_id=remote_id,
            name=f["name"],
            description=f["description"],
            url=f["url"],
            download_ref=f"https://download.test/{remote_id}",
            created_at=f["created_at"],
        )


@pytest.fixture
def sync_config() -> SyncSettings:
    """Sync settings with no retry delay."""
    return SyncSettings(retry_delay_seconds=0)


@pytest_asyncio.fixture(scope="function")
async def local_session_maker(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Session factory for a file-backed local index database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'local.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(LocalBase.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def catalog_session_maker(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Session factory for a file-backed catalog database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(CatalogBase.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def local_index(local_session_maker) -> LocalImageIndex:
    return LocalImageIndex(local_session_maker)


@pytest.fixture
def catalog(catalog_session_maker) -> MetadataCatalog:
    return MetadataCatalog(catalog_session_maker)


@pytest.fixture
def store(tmp_path, sync_config: SyncSettings) -> LocalImageStore:
    return LocalImageStore(tmp_path / "images", sync_config)


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def coordinator(
    store: LocalImageStore,
    local_index: LocalImageIndex,
    catalog: MetadataCatalog,
    drive: FakeDrive,
    sync_config: SyncSettings,
) -> ImageSyncCoordinator:
    """Coordinator wired to temporary databases and the fake drive."""
    return ImageSyncCoordinator(
        store=store,
        index=local_index,
        catalog=catalog,
        remote=drive,
        status=SyncStatusPublisher(),
        config=sync_config,
    )


@pytest_asyncio.fixture(scope="function")
async def sample_site(catalog_session_maker) -> tuple[Installation, RequiredImageType]:
    """Installation 42 with a "roof-overview" required image type."""
    installation = Installation(
        id=42,
        name="Roof array Brno",
        region="South Moravia",
        address="Hlavni 1, Brno",
        user_id=7,
    )
    required = RequiredImageType(
        id=1,
        name="roof-overview",
        min_images=2,
        description="Whole roof with all panels visible",
    )
    async with catalog_session_maker() as db:
        db.add(installation)
        db.add(required)
        await db.commit()
    return installation, required


@pytest_asyncio.fixture(scope="function")
async def client(
    coordinator: ImageSyncCoordinator,
    local_index: LocalImageIndex,
    catalog: MetadataCatalog,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with the test coordinator installed."""
    app.state.coordinator = coordinator
    app.state.local_index = local_index
    app.state.catalog = catalog

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.state.coordinator = None
    app.state.local_index = None
    app.state.catalog = None
