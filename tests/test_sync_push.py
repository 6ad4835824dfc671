"""Tests for push reconciliation and upload on demand."""

import asyncio
from pathlib import Path

import pytest

from pvsync.core.exceptions import (
    CatalogInconsistency,
    NotFoundError,
    TransientNetworkError,
    UploadDeferred,
    UploadFailed,
    ValidationError,
)
from pvsync.schemas.image import CatalogEntryCreate
from pvsync.services.hasher import hash_bytes
from tests.conftest import IMAGE_A, IMAGE_B


async def capture(coordinator, file_name, data, installation_id=42, required_image_id=1):
    return await coordinator.save_image_locally(
        installation_id=installation_id,
        required_image_id=required_image_id,
        data=data,
        user_id=7,
        file_name=file_name,
    )


@pytest.mark.asyncio
async def test_duplicate_capture_uploads_once(coordinator, local_index, catalog, drive, sample_site):
    """Two captures of the same bytes end up bound to one catalog entry."""
    installation, required = sample_site
    a_id = await capture(coordinator, "a.jpg", IMAGE_A, installation.id, required.id)
    b_id = await capture(coordinator, "b.jpg", IMAGE_A, installation.id, required.id)

    report = await coordinator.sync_unuploaded_images()

    assert drive.upload_calls == 1
    assert report.uploaded == 1
    assert report.bound == 1
    assert report.failed == 0

    a = await local_index.get_image(a_id)
    b = await local_index.get_image(b_id)
    assert a.cloud_id is not None
    assert a.cloud_id == b.cloud_id
    assert a.is_uploaded and b.is_uploaded

    entries = await catalog.get_active_entries()
    assert len(entries) == 1
    assert entries[0].hash == a.hash
    assert entries[0].installation_id == 42
    assert entries[0].required_image_id == required.id
    assert entries[0].user_id == 7


@pytest.mark.asyncio
async def test_push_creates_catalog_entry(coordinator, local_index, catalog, drive):
    """A new image is uploaded and registered with its remote location."""
    local_id = await capture(coordinator, "roof.jpg", IMAGE_A)

    await coordinator.sync_unuploaded_images()

    record = await local_index.get_image(local_id)
    entry = await catalog.get_entry(record.cloud_id)
    assert entry.active is True
    assert entry.remote_id in drive.files
    assert entry.location == drive.files[entry.remote_id]["url"]
    assert drive.files[entry.remote_id]["data"] == IMAGE_A


@pytest.mark.asyncio
async def test_failed_upload_does_not_abort_pass(coordinator, local_index, drive):
    """Record A exhausting its retries does not stop record B."""
    drive.failing_names = {"a.jpg"}
    a_id = await capture(coordinator, "a.jpg", IMAGE_A)
    b_id = await capture(coordinator, "b.jpg", IMAGE_B)

    report = await coordinator.sync_unuploaded_images()

    assert report.failed == 1
    assert report.failed_ids == [a_id]
    assert report.uploaded == 1

    a = await local_index.get_image(a_id)
    b = await local_index.get_image(b_id)
    assert a.is_uploaded is False
    assert a.cloud_id is None
    assert b.is_uploaded is True


@pytest.mark.asyncio
async def test_concurrent_uploads_capped(coordinator, drive, sync_config):
    """A pass never has more uploads in flight than the slot limit."""
    drive.upload_delay = 0.02
    for i in range(8):
        await capture(coordinator, f"panel-{i}.jpg", IMAGE_A + bytes([i]))

    report = await coordinator.sync_unuploaded_images()

    assert report.uploaded == 8
    assert report.deferred == 0
    assert drive.max_in_flight <= sync_config.max_concurrent_uploads
    assert drive.max_in_flight > 1
    assert coordinator.upload_slots.in_use == 0


@pytest.mark.asyncio
async def test_upload_succeeds_on_third_attempt(coordinator, local_index, drive):
    """Two transient failures are retried away."""
    drive.upload_failures = [
        TransientNetworkError("timeout"),
        TransientNetworkError("timeout"),
    ]
    local_id = await capture(coordinator, "roof.jpg", IMAGE_A)

    report = await coordinator.sync_unuploaded_images()

    assert drive.upload_calls == 3
    assert report.uploaded == 1
    record = await local_index.get_image(local_id)
    assert record.is_uploaded is True


@pytest.mark.asyncio
async def test_upload_fails_after_retries(coordinator, local_index, catalog, drive):
    """Failures beyond the retry budget leave the record unuploaded."""
    drive.upload_failures = [TransientNetworkError("down") for _ in range(4)]
    local_id = await capture(coordinator, "roof.jpg", IMAGE_A)

    report = await coordinator.sync_unuploaded_images()

    assert drive.upload_calls == 3
    assert report.failed == 1
    record = await local_index.get_image(local_id)
    assert record.is_uploaded is False
    assert record.cloud_id is None
    assert await catalog.get_active_entries() == []
    assert coordinator.upload_slots.in_use == 0


@pytest.mark.asyncio
async def test_upload_on_demand_raises_upload_failed(coordinator, drive):
    """Callers of upload on demand see the failure."""
    drive.failing_names = {"roof.jpg"}
    local_id = await capture(coordinator, "roof.jpg", IMAGE_A)

    with pytest.raises(UploadFailed):
        await coordinator.upload_local_image_to_cloud(local_id)

    assert drive.upload_calls == 3


@pytest.mark.asyncio
async def test_upload_on_demand_deferred_without_free_slot(coordinator, local_index, drive):
    """With every slot taken the image is deferred, not blocked on."""
    local_id = await capture(coordinator, "roof.jpg", IMAGE_A)
    slots = coordinator.upload_slots
    while slots.try_acquire():
        pass

    with pytest.raises(UploadDeferred):
        await coordinator.upload_local_image_to_cloud(local_id)

    report = await coordinator.sync_unuploaded_images()
    assert report.deferred == 1
    assert drive.upload_calls == 0
    assert (await local_index.get_image(local_id)).is_uploaded is False

    for _ in range(slots.limit):
        slots.release()
    report = await coordinator.sync_unuploaded_images()
    assert report.uploaded == 1


@pytest.mark.asyncio
async def test_upload_on_demand_binds_to_existing_entry(coordinator, local_index, drive):
    """Uploading bytes the catalog already holds binds instead of uploading."""
    first_id = await capture(coordinator, "a.jpg", IMAGE_A)
    entry = await coordinator.upload_local_image_to_cloud(first_id, description="north side")
    assert drive.files[entry.remote_id]["description"] == "north side"

    second_id = await capture(coordinator, "copy.jpg", IMAGE_A)
    bound = await coordinator.upload_local_image_to_cloud(second_id)

    assert bound.id == entry.id
    assert drive.upload_calls == 1
    assert (await local_index.get_image(second_id)).cloud_id == entry.id


@pytest.mark.asyncio
async def test_upload_on_demand_unknown_image(coordinator):
    with pytest.raises(NotFoundError):
        await coordinator.upload_local_image_to_cloud(999)


@pytest.mark.asyncio
async def test_same_bytes_under_two_types_are_separate_entries(coordinator, catalog, drive):
    """Dedup binding is scoped per installation and required image type."""
    await capture(coordinator, "a.jpg", IMAGE_A, required_image_id=1)
    await capture(coordinator, "a.jpg", IMAGE_A, required_image_id=2)

    await coordinator.sync_unuploaded_images()

    entries = await catalog.get_active_entries()
    assert drive.upload_calls == 2
    assert sorted(e.required_image_id for e in entries) == [1, 2]


@pytest.mark.asyncio
async def test_second_pass_is_a_no_op(coordinator, drive):
    await capture(coordinator, "a.jpg", IMAGE_A)
    await coordinator.sync_unuploaded_images()

    report = await coordinator.sync_unuploaded_images()

    assert report.total == 0
    assert drive.upload_calls == 1


@pytest.mark.asyncio
async def test_modified_file_is_not_uploaded(coordinator, local_index, drive):
    """A file whose bytes no longer match its recorded hash is skipped."""
    local_id = await capture(coordinator, "a.jpg", IMAGE_A)
    record = await local_index.get_image(local_id)
    Path(record.local_path).write_bytes(IMAGE_B)

    report = await coordinator.sync_unuploaded_images()
    assert report.failed == 1
    assert drive.upload_calls == 0

    with pytest.raises(CatalogInconsistency):
        await coordinator.upload_local_image_to_cloud(local_id)


@pytest.mark.asyncio
async def test_missing_file_is_skipped(coordinator, local_index, drive):
    missing_id = await capture(coordinator, "gone.jpg", IMAGE_A)
    kept_id = await capture(coordinator, "kept.jpg", IMAGE_B)
    Path((await local_index.get_image(missing_id)).local_path).unlink()

    report = await coordinator.sync_unuploaded_images()

    assert report.failed_ids == [missing_id]
    assert (await local_index.get_image(kept_id)).is_uploaded is True


@pytest.mark.asyncio
async def test_inactive_record_is_ignored(coordinator, local_index, drive):
    local_id = await capture(coordinator, "a.jpg", IMAGE_A)
    await local_index.deactivate(local_id)

    report = await coordinator.sync_unuploaded_images()

    assert report.total == 0
    assert drive.upload_calls == 0


@pytest.mark.asyncio
async def test_capture_with_display_name_only(coordinator, local_index):
    local_id = await coordinator.save_image_locally(42, 1, IMAGE_A, user_id=7, name="Roof photo")

    record = await local_index.get_image(local_id)
    assert record.name == "Roof photo"
    assert record.local_path.endswith("_image.jpg")
    assert Path(record.local_path).read_bytes() == IMAGE_A


@pytest.mark.asyncio
async def test_capture_rejects_bad_extension(coordinator, local_index):
    with pytest.raises(ValidationError):
        await capture(coordinator, "notes.txt", b"hello")

    assert await local_index.list_unuploaded() == []


@pytest.mark.asyncio
async def test_duplicate_entries_from_earlier_passes_are_reconciled(coordinator, local_index, catalog, drive):
    """Records bind to the oldest of several active entries with the same bytes."""
    first = await catalog.create_entry(
        CatalogEntryCreate(
            installation_id=42,
            required_image_id=1,
            location="https://drive.test/first",
            user_id=7,
            hash=hash_bytes(IMAGE_A),
        )
    )
    await catalog.create_entry(
        CatalogEntryCreate(
            installation_id=42,
            required_image_id=1,
            location="https://drive.test/second",
            user_id=7,
            hash=hash_bytes(IMAGE_A),
        )
    )
    ids = [await capture(coordinator, f"copy-{i}.jpg", IMAGE_A) for i in range(3)]

    report = await coordinator.sync_unuploaded_images()

    assert report.bound == 3
    assert report.uploaded == 0
    assert drive.upload_calls == 0
    for local_id in ids:
        assert (await local_index.get_image(local_id)).cloud_id == first


@pytest.mark.asyncio
async def test_concurrent_passes_converge(coordinator, local_index, catalog, drive):
    """Two overlapping passes never leave a record unbound, and later passes only bind."""
    drive.upload_delay = 0.05
    ids = [await capture(coordinator, f"copy-{i}.jpg", IMAGE_A) for i in range(2)]

    await asyncio.gather(
        coordinator.sync_unuploaded_images(),
        coordinator.sync_unuploaded_images(),
    )

    uploads = drive.upload_calls
    assert 1 <= uploads <= 2
    assert await local_index.list_unuploaded() == []

    active_ids = {e.id for e in await catalog.get_active_entries()}
    for local_id in ids:
        assert (await local_index.get_image(local_id)).cloud_id in active_ids

    late_id = await capture(coordinator, "late.jpg", IMAGE_A)
    report = await coordinator.sync_unuploaded_images()

    assert report.bound == 1
    assert report.uploaded == 0
    assert drive.upload_calls == uploads
    assert (await local_index.get_image(late_id)).cloud_id == min(active_ids)
