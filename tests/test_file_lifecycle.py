import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from docforge_core.exceptions import InvalidTransitionError, StorageError, StoragePathError
from docforge_core.models import FileStatus, UserModel, as_utc
from docforge_core.services import FileLifecycleManager, LifecycleError
from docforge_core.storage import LocalFileStorage


class FlakyStorage(LocalFileStorage):
    """Local storage whose deletes fail for selected paths."""

    def __init__(self, root):
        super().__init__(root)
        self.fail_paths = set()

    async def delete(self, path: str) -> bool:
        if path in self.fail_paths:
            raise StorageError(f"simulated outage deleting {path}")
        return await super().delete(path)


async def _pending_file(files, make_user, tier="free", name="report.pdf"):
    user_id = await make_user(tier=tier)
    result = await files.upload(user_id, name, b"%PDF-1.7 test", "application/pdf")
    assert result.ok
    return user_id, result.file


# ---------------------------------------------------------------------------
# create / upload
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_upload_stores_bytes_and_creates_pending_record(files, storage, make_user, clock):
    user_id, file = await _pending_file(files, make_user)

    assert file.status == FileStatus.PENDING.value
    assert file.user_id == user_id
    assert file.original_name == "report.pdf"
    assert file.file_size == len(b"%PDF-1.7 test")
    assert file.storage_path.startswith(f"{user_id}/")
    assert await storage.exists(file.storage_path)
    assert await storage.open(file.storage_path) == b"%PDF-1.7 test"


@pytest.mark.asyncio
async def test_upload_expiry_follows_tier_retention(files, make_user, clock):
    _, free_file = await _pending_file(files, make_user, tier="free")
    _, pro_file = await _pending_file(files, make_user, tier="pro")

    assert as_utc(free_file.expires_at) == clock.now() + timedelta(hours=1)
    assert as_utc(pro_file.expires_at) == clock.now() + timedelta(hours=24)


@pytest.mark.asyncio
async def test_upload_strips_directories_from_name(files, make_user):
    user_id = await make_user()
    result = await files.upload(user_id, "../../etc/passwd", b"x", "text/plain")
    assert result.ok
    assert result.file.storage_path == f"{user_id}/{result.file_id}-passwd"


@pytest.mark.asyncio
async def test_upload_for_unknown_user_stores_nothing(files, storage):
    result = await files.upload("no-such-user", "a.txt", b"data", "text/plain")

    assert result.ok is False
    assert result.error == LifecycleError.NOT_FOUND
    assert not storage.root.exists() or not any(storage.root.rglob("*.txt"))


@pytest.mark.asyncio
async def test_create_registers_existing_object(files, storage, make_user, clock):
    user_id = await make_user()
    await storage.put(f"{user_id}/scan.png", b"png")
    expires_at = clock.now() + timedelta(hours=5)

    file = await files.create(
        owner_id=user_id,
        storage_path=f"{user_id}/scan.png",
        mime_type="image/png",
        file_size=3,
        expires_at=expires_at,
        tool_used="image_compress",
        metadata={"quality": 80},
    )

    stored = await files.get_file(file.id)
    assert stored.status == FileStatus.PENDING.value
    assert stored.original_name == "scan.png"
    assert stored.tool_used == "image_compress"
    assert stored.extra_metadata == {"quality": 80}
    assert as_utc(stored.expires_at) == expires_at


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_happy_path_pending_processing_completed(files, storage, make_user):
    user_id, file = await _pending_file(files, make_user)

    started = await files.transition_to_processing(file.id)
    assert started.ok and started.status == FileStatus.PROCESSING

    output_path = f"{user_id}/output-{file.id}.pdf"
    await storage.put(output_path, b"converted")
    done = await files.complete(file.id, output_path, "report_processed.pdf")
    assert done.ok and done.status == FileStatus.COMPLETED

    stored = await files.get_file(file.id)
    assert stored.status == FileStatus.COMPLETED.value
    assert stored.output_path == output_path
    assert stored.output_name == "report_processed.pdf"
    assert as_utc(stored.expires_at) == as_utc(file.expires_at)


@pytest.mark.asyncio
async def test_complete_without_processing_is_rejected(files, make_user):
    _, file = await _pending_file(files, make_user)

    result = await files.complete(file.id, "out.pdf", "out.pdf")

    assert result.ok is False
    assert result.error == LifecycleError.INVALID_TRANSITION
    assert result.status == FileStatus.PENDING
    stored = await files.get_file(file.id)
    assert stored.status == FileStatus.PENDING.value
    assert stored.output_path is None


@pytest.mark.asyncio
async def test_double_start_is_rejected(files, make_user):
    _, file = await _pending_file(files, make_user)

    assert (await files.transition_to_processing(file.id)).ok
    second = await files.transition_to_processing(file.id)

    assert second.ok is False
    assert second.error == LifecycleError.INVALID_TRANSITION
    assert second.status == FileStatus.PROCESSING


@pytest.mark.asyncio
async def test_fail_keeps_source_upload(files, storage, make_user):
    _, file = await _pending_file(files, make_user)
    assert (await files.transition_to_processing(file.id)).ok

    result = await files.fail(file.id, "corrupt PDF")

    assert result.ok and result.status == FileStatus.FAILED
    stored = await files.get_file(file.id)
    assert stored.error_message == "corrupt PDF"
    assert await storage.exists(file.storage_path)


@pytest.mark.asyncio
async def test_fail_allowed_from_pending_but_not_from_completed(files, storage, make_user):
    _, pending = await _pending_file(files, make_user)
    assert (await files.fail(pending.id, "bad input")).ok

    user_id, file = await _pending_file(files, make_user)
    await files.transition_to_processing(file.id)
    await files.complete(file.id, file.storage_path, "same.pdf")

    result = await files.fail(file.id, "too late")
    assert result.error == LifecycleError.INVALID_TRANSITION
    assert result.status == FileStatus.COMPLETED


@pytest.mark.asyncio
async def test_racing_completions_have_one_winner(files, make_user):
    _, file = await _pending_file(files, make_user)
    await files.transition_to_processing(file.id)

    results = await asyncio.gather(
        files.complete(file.id, "a.pdf", "a.pdf"),
        files.complete(file.id, "b.pdf", "b.pdf"),
    )

    winners = [r for r in results if r.ok]
    losers = [r for r in results if not r.ok]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].error == LifecycleError.INVALID_TRANSITION


@pytest.mark.asyncio
async def test_transition_on_unknown_file(files):
    result = await files.transition_to_processing("no-such-file")
    assert result.error == LifecycleError.NOT_FOUND


@pytest.mark.asyncio
async def test_raise_for_error(files, make_user):
    _, file = await _pending_file(files, make_user)
    result = await files.complete(file.id, "out.pdf")

    with pytest.raises(InvalidTransitionError) as exc_info:
        result.raise_for_error()
    assert exc_info.value.file_id == file.id

    ok = await files.transition_to_processing(file.id)
    ok.raise_for_error()


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_delete_removes_source_and_output(files, storage, make_user):
    user_id, file = await _pending_file(files, make_user)
    await files.transition_to_processing(file.id)
    output_path = f"{user_id}/output.pdf"
    await storage.put(output_path, b"converted")
    await files.complete(file.id, output_path, "output.pdf")

    result = await files.delete(file.id)

    assert result.ok and result.status == FileStatus.DELETED
    assert not await storage.exists(file.storage_path)
    assert not await storage.exists(output_path)
    stored = await files.get_file(file.id)
    assert stored.status == FileStatus.DELETED.value
    assert stored.deleted_at is not None


@pytest.mark.asyncio
async def test_delete_is_idempotent(files, make_user):
    _, file = await _pending_file(files, make_user)

    first = await files.delete(file.id)
    second = await files.delete(file.id)

    assert first.ok and second.ok
    assert first.status == second.status == FileStatus.DELETED


@pytest.mark.asyncio
async def test_deleted_file_accepts_no_further_transitions(files, make_user):
    _, file = await _pending_file(files, make_user)
    await files.delete(file.id)

    result = await files.transition_to_processing(file.id)
    assert result.error == LifecycleError.INVALID_TRANSITION
    assert result.status == FileStatus.DELETED


@pytest.mark.asyncio
async def test_manual_delete_checks_owner(files, storage, make_user):
    owner_id, file = await _pending_file(files, make_user)
    other_id = await make_user()

    denied = await files.delete(file.id, owner_id=other_id)
    assert denied.error == LifecycleError.FORBIDDEN
    assert await storage.exists(file.storage_path)

    assert await files.get_file(file.id, owner_id=other_id) is None
    assert (await files.get_file(file.id, owner_id=owner_id)).id == file.id

    allowed = await files.delete(file.id, owner_id=owner_id)
    assert allowed.ok


@pytest.mark.asyncio
async def test_delete_unknown_file(files):
    result = await files.delete("no-such-file")
    assert result.ok is False
    assert result.error == LifecycleError.NOT_FOUND


@pytest.mark.asyncio
async def test_storage_failure_leaves_record_for_retry(database, clock, core_config, make_user):
    storage = FlakyStorage(core_config.STORAGE_ROOT)
    files = FileLifecycleManager(
        database=database, storage=storage, clock=clock, config=core_config
    )
    _, file = await _pending_file(files, make_user)
    storage.fail_paths.add(file.storage_path)

    result = await files.delete(file.id)

    assert result.ok is False
    assert result.error == LifecycleError.STORAGE_ERROR
    assert (await files.get_file(file.id)).status == FileStatus.PENDING.value

    storage.fail_paths.clear()
    assert (await files.delete(file.id)).ok
    assert not await storage.exists(file.storage_path)


@pytest.mark.asyncio
async def test_concurrent_deletes_agree(files, storage, make_user):
    _, file = await _pending_file(files, make_user)

    results = await asyncio.gather(*(files.delete(file.id) for _ in range(3)))

    assert all(r.ok for r in results)
    assert not await storage.exists(file.storage_path)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_user_files_hides_deleted(files, make_user):
    user_id = await make_user()
    kept = await files.upload(user_id, "a.pdf", b"a", "application/pdf")
    gone = await files.upload(user_id, "b.pdf", b"b", "application/pdf")
    await files.delete(gone.file_id)

    visible = await files.list_user_files(user_id)
    everything = await files.list_user_files(user_id, include_deleted=True)

    assert [f.id for f in visible] == [kept.file_id]
    assert {f.id for f in everything} == {kept.file_id, gone.file_id}


@pytest.mark.asyncio
async def test_list_expired(files, make_user, clock):
    _, short_lived = await _pending_file(files, make_user, tier="free")
    _, long_lived = await _pending_file(files, make_user, tier="pro")

    assert await files.list_expired() == []

    clock.advance(hours=2)
    assert await files.list_expired() == [short_lived.id]

    clock.advance(hours=23)
    assert await files.list_expired() == [short_lived.id, long_lived.id]


# ---------------------------------------------------------------------------
# Storage paths and user removal
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_rejects_path_outside_storage_root(files, make_user, clock):
    user_id = await make_user()

    with pytest.raises(StoragePathError):
        await files.create(
            owner_id=user_id,
            storage_path="../outside.bin",
            mime_type="application/octet-stream",
            file_size=1,
            expires_at=clock.now() + timedelta(hours=1),
        )

    assert await files.list_user_files(user_id, include_deleted=True) == []


@pytest.mark.asyncio
async def test_complete_rejects_output_outside_storage_root(files, make_user):
    _, file = await _pending_file(files, make_user)
    await files.transition_to_processing(file.id)

    result = await files.complete(file.id, "../../elsewhere/out.pdf")

    assert result.error == LifecycleError.STORAGE_ERROR
    stored = await files.get_file(file.id)
    assert stored.status == FileStatus.PROCESSING.value
    assert stored.output_path is None


@pytest.mark.asyncio
async def test_user_with_files_cannot_be_removed_directly(database, files, storage, make_user):
    user_id, file = await _pending_file(files, make_user)

    with pytest.raises(IntegrityError):
        async with database.session() as session:
            await session.delete(await session.get(UserModel, user_id))

    assert (await files.get_file(file.id)).status == FileStatus.PENDING.value
    assert await storage.exists(file.storage_path)


@pytest.mark.asyncio
async def test_purge_user_files_then_remove_user(database, files, storage, make_user, load_user):
    user_id, first = await _pending_file(files, make_user)
    second = (await files.upload(user_id, "b.pdf", b"b", "application/pdf")).file
    await files.delete(second.id)

    removed = await files.purge_user_files(user_id)

    assert removed == 2
    assert not await storage.exists(first.storage_path)
    assert await files.list_user_files(user_id, include_deleted=True) == []

    async with database.session() as session:
        await session.delete(await session.get(UserModel, user_id))
    assert await load_user(user_id) is None


@pytest.mark.asyncio
async def test_purge_keeps_records_when_storage_fails(database, clock, core_config, make_user):
    storage = FlakyStorage(core_config.STORAGE_ROOT)
    files = FileLifecycleManager(
        database=database, storage=storage, clock=clock, config=core_config
    )
    user_id, file = await _pending_file(files, make_user)
    storage.fail_paths.add(file.storage_path)

    with pytest.raises(StorageError):
        await files.purge_user_files(user_id)

    assert (await files.get_file(file.id)).status == FileStatus.PENDING.value
    assert await storage.exists(file.storage_path)
