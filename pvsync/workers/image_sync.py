"""Image sync coordinator.

Keeps the on-device image index and the cloud catalog convergent:

- push: local images not yet uploaded are bound to an existing catalog entry
  with the same content, or uploaded and registered as a new entry;
- pull: active catalog entries missing locally are downloaded;
- delete: an image is removed remotely and soft-deleted on both sides.

Both passes run on a recurring timer and can be invoked directly. Per-image
failures are logged and never abort a pass; the image simply stays in its
previous state and is picked up again by the next pass.
"""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncGenerator, TypeVar

import backoff
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from pvsync.core.config import SyncSettings
from pvsync.core.exceptions import (
    CatalogInconsistency,
    DownloadFailed,
    NotFoundError,
    RemoteStoreError,
    TransientNetworkError,
    UploadDeferred,
    UploadFailed,
    ValidationError,
)
from pvsync.schemas.image import (
    CatalogEntryCreate,
    CatalogEntryDTO,
    LocalImageCreate,
    LocalImageRecord,
    RemoteFile,
)
from pvsync.schemas.sync import SyncReport, SyncStatusDTO
from pvsync.services.catalog_service import MetadataCatalog
from pvsync.services.hasher import hash_bytes, hash_file
from pvsync.services.image_storage import DEFAULT_FILE_NAME, LocalImageStore
from pvsync.services.local_index import LocalImageIndex
from pvsync.services.remote_store import OneDriveClient
from pvsync.services.status import SyncStatusPublisher

T = TypeVar("T")

REMOTE_ERRORS = (TransientNetworkError, RemoteStoreError, NotFoundError)


class UploadSlots:
    """Fixed pool of upload slots.

    Acquisition never waits: a caller that finds the pool exhausted defers its
    work instead. Check and increment happen without an await in between, so
    the counter is consistent under the single event loop.
    """

    def __init__(self, limit: int):
        self.limit = max(1, limit)
        self._in_use = 0

    @property
    def in_use(self) -> int:
        return self._in_use

    def try_acquire(self) -> bool:
        if self._in_use >= self.limit:
            return False
        self._in_use += 1
        return True

    def release(self) -> None:
        self._in_use = max(0, self._in_use - 1)


class ImageSyncCoordinator:
    """Orchestrates push/pull reconciliation and publishes the sync status.

    Usage:
        async with image_sync_lifespan(store, index, catalog, drive) as coordinator:
            await coordinator.sync_unuploaded_images()
    """

    JOB_ID = "image_sync"

    def __init__(
        self,
        store: LocalImageStore,
        index: LocalImageIndex,
        catalog: MetadataCatalog,
        remote: OneDriveClient,
        status: SyncStatusPublisher | None = None,
        config: SyncSettings | None = None,
    ):
        self._store = store
        self._index = index
        self._catalog = catalog
        self._remote = remote
        self.config = config or SyncSettings()
        self.status = status or SyncStatusPublisher()
        self._slots = UploadSlots(self.config.max_concurrent_uploads)
        self._scheduler: AsyncIOScheduler | None = None
        self._stopped = False

    @property
    def running(self) -> bool:
        """Whether the periodic sync job is scheduled."""
        return self._scheduler is not None

    @property
    def upload_slots(self) -> UploadSlots:
        return self._slots

    # --- Lifecycle ---

    async def start(self, run_immediately: bool = False) -> None:
        """Schedule the periodic push-then-pull job."""
        if self._scheduler:
            return

        self._stopped = False
        job_kwargs: dict[str, Any] = {}
        if run_immediately:
            job_kwargs["next_run_time"] = datetime.now()

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._scheduled_sync,
            "interval",
            minutes=self.config.sync_interval_minutes,
            id=self.JOB_ID,
            max_instances=1,
            coalesce=True,
            **job_kwargs,
        )
        self._scheduler.start()
        logger.info(
            f"Image sync started (every {self.config.sync_interval_minutes} min, "
            f"{self.config.max_concurrent_uploads} upload slots)"
        )

    async def stop(self) -> None:
        """Cancel the timer and refuse new passes.

        Transfers already in flight finish on their own.
        """
        self._stopped = True

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        # Uploads still in flight release into the pool they acquired from
        self._slots = UploadSlots(self.config.max_concurrent_uploads)
        self.status.disconnect()
        logger.info("Image sync stopped")

    async def __aenter__(self) -> "ImageSyncCoordinator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    def get_status(self) -> SyncStatusDTO:
        """Snapshot of the sync status."""
        return SyncStatusDTO(
            status=self.status.status,
            running=self.running,
            has_completed_sync=self.status.has_completed_sync,
        )

    async def run_once(self) -> tuple[SyncReport, SyncReport]:
        """One timer tick: push, then pull."""
        push = await self.sync_unuploaded_images()
        pull = await self.sync_cloud_images()
        return push, pull

    async def _scheduled_sync(self) -> None:
        try:
            await self.run_once()
        except Exception as e:
            logger.error(f"Scheduled image sync failed: {e}")

    # --- Capture ---

    async def save_image_locally(
        self,
        installation_id: int,
        required_image_id: int,
        data: bytes,
        user_id: int,
        file_name: str | None = None,
        name: str | None = None,
    ) -> int:
        """Store a captured image and record it in the local index."""
        logger.info(
            f"Saving image locally for installation: {installation_id}, "
            f"required: {required_image_id}"
        )
        self._validate_upload(file_name or DEFAULT_FILE_NAME, len(data))

        local_path = self._store.save_local_file(
            installation_id, required_image_id, data, file_name
        )
        try:
            local_id = await self._index.record_local_image(
                LocalImageCreate(
                    installation_id=installation_id,
                    required_image_id=required_image_id,
                    local_path=local_path,
                    name=name,
                    user_id=user_id,
                    hash=hash_bytes(data),
                )
            )
        except Exception:
            self._store.delete_local_file(local_path)
            raise

        logger.info(f"Image {local_id} saved locally at {local_path}")
        return local_id

    # --- Push ---

    async def sync_unuploaded_images(self) -> SyncReport:
        """Push pass: bind or upload every active, not yet uploaded image."""
        report = SyncReport(phase="push")
        if self._stopped:
            logger.warning("Image sync is stopped, skipping push pass")
            return report

        logger.info("Starting sync of unuploaded images")
        self.status.begin()
        try:
            records = await self._index.list_unuploaded()
            report.total = len(records)

            # Copies of the same bytes are handled one after another by the
            # same worker so the first upload is visible to the rest.
            groups: dict[tuple[int, int, str], list[LocalImageRecord]] = {}
            for record in records:
                groups.setdefault(record.dedup_key, []).append(record)

            seen: set[tuple[int, int, str]] = set()

            async def push_group(group: list[LocalImageRecord]) -> None:
                for record in group:
                    await self._push_record(record, seen, report)

            await self._run_bounded(push_group, list(groups.values()))

            logger.info(
                f"Completed sync of unuploaded images: {report.uploaded} uploaded, "
                f"{report.bound} bound, {report.deferred} deferred, "
                f"{report.failed} failed"
            )
            return report
        finally:
            self.status.end()

    async def _push_record(
        self,
        record: LocalImageRecord,
        seen: set[tuple[int, int, str]],
        report: SyncReport,
    ) -> None:
        try:
            _, bound = await self._upload_record(
                record, allow_upload=record.dedup_key not in seen
            )
        except UploadDeferred:
            report.deferred += 1
            logger.warning(f"No free upload slot, deferring image {record.id}")
        except Exception as e:
            report.failed += 1
            report.failed_ids.append(record.id)
            logger.error(
                f"Error syncing image {record.id} "
                f"(installation {record.installation_id}): {e}"
            )
        else:
            seen.add(record.dedup_key)
            if bound:
                report.bound += 1
            else:
                report.uploaded += 1

    async def upload_local_image_to_cloud(
        self, local_id: int, description: str | None = None
    ) -> CatalogEntryDTO:
        """Upload (or bind) one local image right away.

        Shares the upload slots and the dedup check with the push pass.
        Raises UploadDeferred when no slot is free.
        """
        logger.info(f"Attempting to upload local image ID: {local_id} to cloud")
        self.status.begin()
        completed = False
        try:
            record = await self._index.get_image(local_id)
            if record is None or not record.is_active:
                raise NotFoundError("Local image not found", local_id=local_id)

            if record.is_uploaded and record.cloud_id is not None:
                entry = await self._catalog.get_entry(record.cloud_id)
                if entry is None:
                    raise CatalogInconsistency(
                        "Local image references a missing catalog entry",
                        local_id=local_id,
                        cloud_id=record.cloud_id,
                    )
                completed = True
                return entry

            entry, _ = await self._upload_record(record, description=description)
            completed = True
            return entry
        finally:
            self.status.end(completed)

    async def _upload_record(
        self,
        record: LocalImageRecord,
        description: str | None = None,
        allow_upload: bool = True,
    ) -> tuple[CatalogEntryDTO, bool]:
        """Bind or upload one record; returns the entry and whether it was bound."""
        path = Path(record.local_path)
        if not path.exists():
            raise NotFoundError("Local file not found", local_id=record.id, path=str(path))

        self._validate_upload(path.name, path.stat().st_size)

        if hash_file(path) != record.hash:
            raise CatalogInconsistency(
                "Local file does not match its recorded hash", local_id=record.id
            )

        existing = await self._catalog.find_active_by_hash(
            record.installation_id, record.required_image_id, record.hash
        )
        if existing:
            await self._index.mark_uploaded(record.id, existing.id)
            logger.info(f"Image {record.id} has the same content as {existing.id}, bound to it")
            return existing, True

        if not allow_upload:
            raise CatalogInconsistency(
                "Entry uploaded earlier in this pass is missing from the catalog",
                local_id=record.id,
            )

        slots = self._slots
        if not slots.try_acquire():
            raise UploadDeferred("Maximum concurrent uploads reached", local_id=record.id)

        try:
            data = self._store.read_file(path)
            try:
                upload = await self._retrying(
                    self._remote.upload_file,
                    record.installation_id,
                    data,
                    path.name,
                    description,
                )
            except REMOTE_ERRORS as e:
                raise UploadFailed(
                    "Failed to upload image after retries",
                    local_id=record.id,
                    installation_id=record.installation_id,
                ) from e

            entry_data = CatalogEntryCreate(
                installation_id=record.installation_id,
                required_image_id=record.required_image_id,
                location=upload.url,
                remote_id=upload.remote_id,
                time_added=record.time_added,
                name=record.name,
                user_id=record.user_id,
                hash=record.hash,
                active=True,
            )
            entry_id = await self._catalog.create_entry(entry_data)
            await self._index.mark_uploaded(record.id, entry_id)
        finally:
            slots.release()

        logger.info(f"Local image {record.id} uploaded to cloud as entry {entry_id}")
        return CatalogEntryDTO(id=entry_id, **entry_data.model_dump()), False

    # --- Pull ---

    async def sync_cloud_images(self) -> SyncReport:
        """Pull pass: download active catalog entries missing locally."""
        report = SyncReport(phase="pull")
        if self._stopped:
            logger.warning("Image sync is stopped, skipping pull pass")
            return report

        logger.info("Starting sync of cloud images to local storage")
        self.status.begin()
        try:
            entries = await self._catalog.get_active_entries()
            report.total = len(entries)

            by_installation: dict[int, list[CatalogEntryDTO]] = {}
            for entry in entries:
                by_installation.setdefault(entry.installation_id, []).append(entry)

            async def pull_installation(group: list[CatalogEntryDTO]) -> None:
                await self._pull_installation(group, report)

            await self._run_bounded(pull_installation, list(by_installation.values()))

            logger.info(
                f"Completed sync of cloud images: {report.downloaded} downloaded, "
                f"{report.skipped} already present, {report.failed} failed"
            )
            return report
        finally:
            self.status.end()

    async def _pull_installation(
        self, entries: list[CatalogEntryDTO], report: SyncReport
    ) -> None:
        installation_id = entries[0].installation_id
        try:
            local = await self._index.list_by_installation(installation_id)
        except Exception as e:
            report.failed += len(entries)
            report.failed_ids.extend(entry.id for entry in entries)
            logger.error(f"Cannot list local images of installation {installation_id}: {e}")
            return

        cloud_ids = {r.cloud_id for r in local if r.cloud_id is not None}
        hashes = {r.hash for r in local}

        for entry in entries:
            if entry.id in cloud_ids or entry.hash in hashes:
                report.skipped += 1
                continue

            try:
                await self._download_entry(entry)
            except Exception as e:
                report.failed += 1
                report.failed_ids.append(entry.id)
                logger.error(
                    f"Error syncing cloud image {entry.id} "
                    f"(installation {installation_id}): {e}"
                )
            else:
                cloud_ids.add(entry.id)
                hashes.add(entry.hash)
                report.downloaded += 1

    async def download_image(self, entry: CatalogEntryDTO) -> str:
        """Make a catalog image available locally, returning its path."""
        logger.info(f"Starting image download for image ID: {entry.id}")
        self.status.begin()
        completed = False
        try:
            local = await self._index.list_by_installation(entry.installation_id)
            existing = next((r for r in local if r.hash == entry.hash), None)
            if existing:
                logger.info("Found existing local image with same hash, skipping download")
                completed = True
                return existing.local_path

            local_path = await self._download_entry(entry)
            completed = True
            return local_path
        finally:
            self.status.end(completed)

    async def _download_entry(self, entry: CatalogEntryDTO) -> str:
        remote_file = await self._find_remote_file(entry)
        if not remote_file.download_ref:
            raise NotFoundError("Remote file has no download link", entry_id=entry.id)

        try:
            data = await self._retrying(self._remote.download_file, remote_file.download_ref)
        except (TransientNetworkError, RemoteStoreError) as e:
            raise DownloadFailed("Failed to download image", entry_id=entry.id) from e

        if hash_bytes(data) != entry.hash:
            raise CatalogInconsistency(
                "Downloaded content does not match catalog hash", entry_id=entry.id
            )

        local_path = self._store.save_local_file(
            entry.installation_id,
            entry.required_image_id,
            data,
            remote_file.name,
        )
        try:
            await self._index.record_local_image(
                LocalImageCreate(
                    installation_id=entry.installation_id,
                    required_image_id=entry.required_image_id,
                    local_path=local_path,
                    name=entry.name,
                    time_added=entry.time_added or datetime.now(),
                    user_id=entry.user_id,
                    hash=entry.hash,
                    cloud_id=entry.id,
                    is_uploaded=True,
                )
            )
        except Exception:
            self._store.delete_local_file(local_path)
            raise

        logger.info(f"Downloaded cloud image {entry.id} to {local_path}")
        return local_path

    async def _find_remote_file(self, entry: CatalogEntryDTO) -> RemoteFile:
        try:
            files = await self._retrying(self._remote.list_files, entry.installation_id)
        except (TransientNetworkError, RemoteStoreError) as e:
            raise DownloadFailed("Failed to list remote images", entry_id=entry.id) from e

        for remote_file in files:
            if entry.remote_id and remote_file.remote_id == entry.remote_id:
                return remote_file
            if entry.location and remote_file.url == entry.location:
                return remote_file

        raise NotFoundError("Image not found in remote store", entry_id=entry.id)

    # --- Delete ---

    async def delete_image(self, entry_id: int) -> None:
        """Delete an image remotely and deactivate it on both sides.

        Every step is attempted. A failed remote delete is re-raised after
        the local and catalog side have been updated.
        """
        logger.info(f"Starting image deletion for ID: {entry_id}")
        self.status.begin()
        completed = False
        try:
            entry = await self._catalog.get_entry(entry_id)
            if entry is None:
                raise NotFoundError("Catalog entry not found", entry_id=entry_id)

            remote_error: Exception | None = None
            try:
                await self._delete_remote(entry)
            except REMOTE_ERRORS as e:
                remote_error = e
                logger.error(f"Error deleting remote image {entry_id}: {e}")

            for record in await self._index.list_by_cloud_id(entry.id):
                self._store.delete_local_file(record.local_path)
                await self._index.deactivate(record.id)

            if entry.active:
                await self._catalog.update_entry(entry.model_copy(update={"active": False}))

            if remote_error:
                raise remote_error

            completed = True
            logger.info(f"Image deletion completed for ID: {entry_id}")
        finally:
            self.status.end(completed)

    async def _delete_remote(self, entry: CatalogEntryDTO) -> None:
        remote_id = entry.remote_id
        if not remote_id:
            files = await self._retrying(self._remote.list_files, entry.installation_id)
            match = next((f for f in files if f.url == entry.location), None)
            if match is None:
                raise NotFoundError("Image not found in remote store", entry_id=entry.id)
            remote_id = match.remote_id

        await self._retrying(self._remote.delete_file, remote_id)

    # --- Maintenance ---

    async def cleanup_orphaned_files(
        self, installation_id: int, required_image_id: int
    ) -> int:
        """Delete files of a type directory that no active local record uses."""
        records = await self._index.list_by_installation(installation_id)
        active_paths = [
            r.local_path for r in records if r.required_image_id == required_image_id
        ]
        return self._store.cleanup_images(installation_id, required_image_id, active_paths)

    # --- Helpers ---

    def _validate_upload(self, file_name: str, size: int) -> None:
        if Path(file_name).suffix.lower() not in self.config.allowed_extensions:
            raise ValidationError("Invalid image file extension", file_name=file_name)
        if size > self.config.max_upload_size_bytes:
            raise ValidationError(
                "Image size exceeds maximum allowed size",
                size=size,
                limit=self.config.max_upload_size_bytes,
            )

    async def _retrying(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """Call a remote operation, retrying transient failures at a fixed delay."""
        retrying = backoff.on_exception(
            backoff.constant,
            TransientNetworkError,
            max_tries=max(1, self.config.max_upload_retries),
            interval=self.config.retry_delay_seconds,
            jitter=None,
            on_backoff=self._log_backoff,
        )(func)
        return await retrying(*args, **kwargs)

    def _log_backoff(self, details: dict[str, Any]) -> None:
        logger.warning(
            f"Retrying {details['target'].__name__} in {details['wait']:.1f}s "
            f"(attempt {details['tries']}/{self.config.max_upload_retries}): "
            f"{details['exception']}"
        )

    async def _run_bounded(
        self,
        worker: Callable[[T], Awaitable[None]],
        items: list[T],
    ) -> None:
        """Run ``worker`` over ``items`` with at most max_concurrent_uploads at once."""
        queue: asyncio.Queue[T] = asyncio.Queue()
        for item in items:
            queue.put_nowait(item)

        async def drain() -> None:
            while not queue.empty():
                await worker(queue.get_nowait())

        size = min(self.config.max_concurrent_uploads, len(items))
        await asyncio.gather(*(drain() for _ in range(max(0, size))))


@asynccontextmanager
async def image_sync_lifespan(
    store: LocalImageStore,
    index: LocalImageIndex,
    catalog: MetadataCatalog,
    remote: OneDriveClient,
    config: SyncSettings | None = None,
) -> AsyncGenerator[ImageSyncCoordinator, None]:
    """Lifespan context manager for one session's ImageSyncCoordinator.

    Usage in FastAPI lifespan:
        async with image_sync_lifespan(store, index, catalog, drive) as coordinator:
            yield
    """
    coordinator = ImageSyncCoordinator(store, index, catalog, remote, config=config)
    await coordinator.start()
    try:
        yield coordinator
    finally:
        await coordinator.stop()
