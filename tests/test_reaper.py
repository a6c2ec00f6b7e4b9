import asyncio
from datetime import timedelta

import pytest

from docforge_core.exceptions import StorageError
from docforge_core.models import FileModel, FileStatus
from docforge_core.services import FileLifecycleManager, Reaper
from docforge_core.services.reaper import REAPER_JOB_ID
from docforge_core.storage import LocalFileStorage


class OutageStorage(LocalFileStorage):
    """Local storage that refuses every delete while `down` is set."""

    down = False

    async def delete(self, path: str) -> bool:
        if self.down:
            raise StorageError(f"storage unavailable: {path}")
        return await super().delete(path)


async def _upload(files, user_id, name="doc.pdf"):
    result = await files.upload(user_id, name, b"content", "application/pdf")
    assert result.ok
    return result.file


@pytest.fixture
def reaper(files, core_config):
    return Reaper(files=files, config=core_config)


@pytest.mark.asyncio
async def test_sweep_reaps_expired_completed_file(files, storage, reaper, make_user, clock):
    user_id = await make_user(tier="free")
    file = await _upload(files, user_id)
    await files.transition_to_processing(file.id)
    output_path = f"{user_id}/converted.docx"
    await storage.put(output_path, b"docx")
    await files.complete(file.id, output_path, "converted.docx")

    clock.advance(minutes=61)
    result = await reaper.sweep()

    assert result.scanned == 1
    assert result.deleted == 1
    assert result.failed == 0
    assert (await files.get_file(file.id)).status == FileStatus.DELETED.value
    assert not await storage.exists(file.storage_path)
    assert not await storage.exists(output_path)


@pytest.mark.asyncio
async def test_sweep_leaves_unexpired_files(files, storage, reaper, make_user, clock):
    user_id = await make_user(tier="pro")
    file = await _upload(files, user_id)

    clock.advance(hours=2)
    result = await reaper.sweep()

    assert result.scanned == 0
    assert (await files.get_file(file.id)).status == FileStatus.PENDING.value
    assert await storage.exists(file.storage_path)


@pytest.mark.asyncio
async def test_sweep_reaps_files_still_processing(files, reaper, make_user, clock):
    user_id = await make_user(tier="free")
    file = await _upload(files, user_id)
    await files.transition_to_processing(file.id)

    clock.advance(hours=2)
    result = await reaper.sweep()

    assert result.deleted == 1
    late = await files.complete(file.id, f"{user_id}/late.pdf")
    assert late.ok is False
    assert late.status == FileStatus.DELETED


@pytest.mark.asyncio
async def test_sweep_ignores_already_deleted(files, reaper, make_user, clock):
    user_id = await make_user(tier="free")
    file = await _upload(files, user_id)
    await files.delete(file.id, owner_id=user_id)

    clock.advance(hours=2)
    result = await reaper.sweep()

    assert result.scanned == 0


@pytest.mark.asyncio
async def test_storage_outage_is_retried_next_sweep(database, clock, core_config, make_user):
    storage = OutageStorage(core_config.STORAGE_ROOT)
    files = FileLifecycleManager(
        database=database, storage=storage, clock=clock, config=core_config
    )
    reaper = Reaper(files=files, config=core_config)

    user_id = await make_user(tier="free")
    first = await _upload(files, user_id, "a.pdf")
    second = await _upload(files, user_id, "b.pdf")
    clock.advance(hours=2)

    storage.down = True
    result = await reaper.sweep()
    assert result.scanned == 2
    assert result.failed == 2
    assert set(result.failed_ids) == {first.id, second.id}
    assert (await files.get_file(first.id)).status == FileStatus.PENDING.value

    storage.down = False
    result = await reaper.sweep()
    assert result.deleted == 2
    assert await files.list_expired() == []


@pytest.mark.asyncio
async def test_sweep_pages_through_batches(files, core_config, make_user, clock):
    core_config.REAPER_BATCH_SIZE = 2
    reaper = Reaper(files=files, config=core_config)
    user_id = await make_user(tier="free")
    for i in range(3):
        await _upload(files, user_id, f"{i}.pdf")
    clock.advance(hours=2)

    result = await reaper.sweep()

    assert result.scanned == 3
    assert result.deleted == 3
    assert await files.list_expired() == []


@pytest.mark.asyncio
async def test_undeletable_file_does_not_block_the_rest(
    files, storage, database, core_config, make_user, clock
):
    core_config.REAPER_BATCH_SIZE = 1
    reaper = Reaper(files=files, config=core_config)
    user_id = await make_user(tier="free")
    async with database.session() as session:
        session.add(
            FileModel(
                id="stuck-file",
                user_id=user_id,
                original_name="outside.bin",
                storage_path="../outside.bin",
                mime_type="application/octet-stream",
                file_size=1,
                status=FileStatus.PENDING.value,
                expires_at=clock.now() - timedelta(hours=1),
            )
        )
    good = await _upload(files, user_id)
    clock.advance(hours=2)

    for _ in range(2):
        result = await reaper.sweep()
        assert result.failed_ids == ["stuck-file"]

    assert (await files.get_file(good.id)).status == FileStatus.DELETED.value
    assert not await storage.exists(good.storage_path)
    assert await files.list_expired() == ["stuck-file"]


@pytest.mark.asyncio
async def test_concurrent_sweeps_delete_each_file_once(files, storage, reaper, make_user, clock):
    user_id = await make_user(tier="free")
    uploaded = [await _upload(files, user_id, f"{i}.pdf") for i in range(4)]
    clock.advance(hours=2)

    results = await asyncio.gather(reaper.sweep(), reaper.sweep())

    assert all(r.failed == 0 for r in results)
    for file in uploaded:
        assert (await files.get_file(file.id)).status == FileStatus.DELETED.value
        assert not await storage.exists(file.storage_path)


@pytest.mark.asyncio
async def test_scheduled_sweeps_start_and_stop(files, reaper, make_user, clock):
    user_id = await make_user(tier="free")
    file = await _upload(files, user_id)
    clock.advance(hours=2)

    scheduler = reaper.start()
    assert reaper.start() is scheduler
    assert reaper.is_running

    job = scheduler.get_job(REAPER_JOB_ID)
    assert job.max_instances == 1
    assert job.coalesce is True

    for _ in range(100):
        if (await files.get_file(file.id)).status == FileStatus.DELETED.value:
            break
        await asyncio.sleep(0.02)

    await reaper.stop()
    assert not reaper.is_running
    assert (await files.get_file(file.id)).status == FileStatus.DELETED.value

    await reaper.stop()
