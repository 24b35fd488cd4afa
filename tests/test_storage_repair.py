import json
import uuid

import pytest

from docvault.core.config import settings
from docvault.core.locks import tree_lock
from docvault.schemas.folder import FolderCreate, OwnerType
from docvault.schemas.storage import ObjectMove
from docvault.services.document import DocumentService
from docvault.services.folder import FolderService
from docvault.services.reconcile import StorageReconciler
from docvault.services.storage import PENDING_DELETIONS_KEY, PENDING_RELOCATIONS_KEY, StorageSync
from docvault.utils.exceptions import ConflictError, NotFoundError, StorageRelocationError


@pytest.fixture
def folder_service(db, storage, redis, notifier):
    return FolderService(db, storage, redis, notifier)


@pytest.fixture
def document_service(db, storage, redis, notifier):
    return DocumentService(db, storage, redis, notifier)


@pytest.fixture
def reconciler(db, storage, redis):
    return StorageReconciler(db, storage, redis)


class TestStorageSync:
    async def test_relocate_reports_each_pair(self, storage, redis):
        storage.objects.update({"A/a-v1.txt": b"a", "A/b-v1.txt": b"b"})
        storage.fail("copy", "A/b-v1.txt")

        report = await StorageSync(storage, redis).relocate([
            ("A/a-v1.txt", "B/a-v1.txt"),
            ("A/b-v1.txt", "B/b-v1.txt"),
            ("A/same.txt", "A/same.txt"),
        ])

        assert [m.target_key for m in report.moved] == ["B/a-v1.txt"]
        assert [m.source_key for m in report.failed] == ["A/b-v1.txt"]
        assert report.storage_status == "pending"
        queued = json.loads(redis.redis.lists[PENDING_RELOCATIONS_KEY][0])
        assert queued["target_key"] == "B/b-v1.txt"

    async def test_leftover_source_is_queued_for_sweep(self, storage, redis):
        storage.objects["A/a-v1.txt"] = b"a"
        storage.fail("delete", "A/a-v1.txt")

        report = await StorageSync(storage, redis).relocate([("A/a-v1.txt", "B/a-v1.txt")])

        assert report.ok
        assert storage.objects["B/a-v1.txt"] == b"a"
        assert await redis.list_length(PENDING_DELETIONS_KEY) == 1

    async def test_queue_without_redis_does_not_raise(self, storage, offline_redis):
        sync = StorageSync(storage, offline_redis)
        await sync.queue_relocation(ObjectMove(source_key="a", target_key="b", error="boom"))
        await sync.queue_deletion("a", "test")


class TestReconciler:
    async def test_retries_failed_folder_move(
        self, folder_service, document_service, reconciler, storage, redis, owner_id, user_id, make_upload
    ):
        a = await folder_service.create_folder(FolderCreate(name="A", owner_id=owner_id, owner_type=OwnerType.USER))
        b = await folder_service.create_folder(FolderCreate(name="B", owner_id=owner_id, owner_type=OwnerType.USER))
        doc, _ = await document_service.upload_document(a.id, make_upload(b"payload"), user_id)

        storage.fail("copy", doc.object_key)
        with pytest.raises(StorageRelocationError):
            await folder_service.move_folder(a.id, b.id)

        integrity = await reconciler.verify_folder(b.id)
        assert not integrity.ok
        assert integrity.missing[0].object_key == "B/" + doc.object_key

        storage.heal()
        result = await reconciler.reconcile()

        assert result.relocations_retried == 1
        assert result.relocations_completed == 1
        assert await redis.list_length(PENDING_RELOCATIONS_KEY) == 0
        assert storage.objects["B/" + doc.object_key] == b"payload"
        assert doc.object_key not in storage.objects
        assert (await reconciler.verify_folder(b.id)).ok
        _, stream = await document_service.open_download(doc.id)
        assert await stream.read() == b"payload"

    async def test_still_failing_relocation_is_requeued(self, reconciler, storage, redis):
        storage.objects["A/x-v1.txt"] = b"x"
        await StorageSync(storage, redis).queue_relocation(ObjectMove(source_key="A/x-v1.txt", target_key="B/x-v1.txt"))
        storage.fail("copy")

        result = await reconciler.reconcile()

        assert result.relocations_requeued == 1
        assert await redis.list_length(PENDING_RELOCATIONS_KEY) == 1

    async def test_already_moved_object_counts_as_done(self, reconciler, storage, redis):
        storage.objects["B/x-v1.txt"] = b"x"
        await StorageSync(storage, redis).queue_relocation(ObjectMove(source_key="A/x-v1.txt", target_key="B/x-v1.txt"))

        result = await reconciler.reconcile()
        assert result.relocations_completed == 1
        assert result.relocations_lost == 0

    async def test_sweeps_queued_deletions(self, reconciler, storage, redis):
        storage.objects.update({"old/a.txt": b"1", "gone/.foldermarker": b""})
        sync = StorageSync(storage, redis)
        await sync.queue_deletion("old/a.txt", "test")
        await sync.queue_deletion("gone/", "test", prefix=True)

        result = await reconciler.reconcile(limit=10)

        assert result.deletions_retried == 2
        assert result.deletions_completed == 2
        assert storage.objects == {}

    async def test_verify_unknown_folder(self, reconciler):
        with pytest.raises(NotFoundError):
            await reconciler.verify_folder(uuid.uuid4())


class TestTreeLock:
    async def test_lock_is_released(self, redis):
        root_id = uuid.uuid4()
        async with tree_lock(redis, [root_id]):
            assert await redis.acquire_lock(f"lock:folder-tree:{root_id}", "other", 10) is False
        assert await redis.acquire_lock(f"lock:folder-tree:{root_id}", "other", 10) is True

    async def test_second_holder_conflicts(self, redis):
        root_id = uuid.uuid4()
        async with tree_lock(redis, [root_id]):
            with pytest.raises(ConflictError):
                async with tree_lock(redis, [root_id]):
                    pass

    async def test_partial_acquire_is_rolled_back(self, redis):
        free, held = uuid.uuid4(), uuid.uuid4()
        await redis.acquire_lock(f"lock:folder-tree:{held}", "other", 10)
        with pytest.raises(ConflictError):
            async with tree_lock(redis, [free, held]):
                pass
        assert f"lock:folder-tree:{free}" not in redis.redis.values

    async def test_runs_unlocked_without_redis(self, offline_redis):
        async with tree_lock(offline_redis, [uuid.uuid4()]):
            pass

    async def test_disabled_by_setting(self, redis, monkeypatch):
        monkeypatch.setattr(settings, "STRUCTURE_LOCKS_ENABLED", False)
        root_id = uuid.uuid4()
        await redis.acquire_lock(f"lock:folder-tree:{root_id}", "other", 10)
        async with tree_lock(redis, [root_id]):
            pass
