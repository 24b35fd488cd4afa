import uuid

import pytest

from docvault.repositories.folder import FolderRepository
from docvault.schemas.folder import FolderCreate, FolderListParams, OwnerType
from docvault.services.document import DocumentService
from docvault.services.folder import FolderService
from docvault.utils.exceptions import (
    ConflictError,
    NotFoundError,
    StorageRelocationError,
    StorageUnavailableError,
    ValidationError,
)


@pytest.fixture
def folder_service(db, storage, redis, notifier):
    return FolderService(db, storage, redis, notifier)


@pytest.fixture
def document_service(db, storage, redis, notifier):
    return DocumentService(db, storage, redis, notifier)


@pytest.fixture
def create(folder_service, owner_id):
    async def _create(name, parent=None, owner=None):
        return await folder_service.create_folder(FolderCreate(
            name=name,
            parent_id=parent.id if parent else None,
            owner_id=owner or owner_id,
            owner_type=OwnerType.USER,
        ))
    return _create


class TestCreate:
    async def test_root_and_child_paths(self, create, storage):
        a = await create("A")
        b = await create("Sub Folder", a)
        assert a.path == "/A"
        assert b.path == "/A/Sub_Folder"
        assert b.parent_id == a.id
        assert "A/.foldermarker" in storage.objects
        assert "A/Sub_Folder/.foldermarker" in storage.objects

    async def test_sibling_collision(self, create):
        a = await create("A")
        await create("B", a)
        with pytest.raises(ConflictError):
            await create("B", a)

    async def test_path_collision_after_space_substitution(self, create):
        await create("My Docs")
        with pytest.raises(ConflictError):
            await create("My_Docs")

    async def test_missing_parent(self, folder_service, owner_id):
        with pytest.raises(NotFoundError):
            await folder_service.create_folder(FolderCreate(
                name="X", parent_id=uuid.uuid4(), owner_id=owner_id, owner_type=OwnerType.USER
            ))

    async def test_parent_owner_must_match(self, create):
        a = await create("A")
        with pytest.raises(ValidationError):
            await create("B", a, owner=uuid.uuid4())

    async def test_marker_failure_removes_folder(self, create, storage, db):
        storage.fail("put")
        with pytest.raises(StorageUnavailableError):
            await create("A")
        assert await FolderRepository(db).get_by_path("/A") is None


class TestRename:
    async def test_rewrites_descendants_and_objects(
        self, create, folder_service, document_service, make_upload, user_id, storage
    ):
        a = await create("A")
        c = await create("C", a)
        doc, _ = await document_service.upload_document(c.id, make_upload(b"hello"), user_id)

        result = await folder_service.rename_folder(a.id, "Renamed")

        assert result.folder.path == "/Renamed"
        assert result.storage_status == "complete"
        child = await folder_service.get_folder(c.id)
        assert child.path == "/Renamed/C"
        moved = await document_service.get_document(doc.id)
        assert moved.path == "/Renamed/C/x.txt"
        assert moved.object_key == "Renamed/C/" + doc.object_key[len("A/C/"):]
        assert storage.objects[moved.object_key] == b"hello"
        assert doc.object_key not in storage.objects
        assert "Renamed/C/.foldermarker" in storage.objects

    async def test_reads_current_paths_after_concurrent_rename(
        self, create, folder_service, db, session_factory, storage, redis, notifier
    ):
        a = await create("A")
        c = await create("C", a)
        repo = FolderRepository(db)
        # Rows this session loaded before another request renamed the parent
        held = [await repo.get_by_id(a.id), await repo.get_by_id(c.id)]

        async with session_factory() as other:
            await FolderService(other, storage, redis, notifier).rename_folder(a.id, "Z")

        result = await folder_service.rename_folder(c.id, "D")

        assert result.folder.path == "/Z/D"
        assert held[1].path == "/Z/D"
        assert "Z/D/.foldermarker" in storage.objects

    async def test_same_name_is_rejected(self, create, folder_service):
        a = await create("A")
        with pytest.raises(ConflictError):
            await folder_service.rename_folder(a.id, "A")

    async def test_sibling_collision(self, create, folder_service):
        root = await create("Root")
        await create("X", root)
        y = await create("Y", root)
        with pytest.raises(ConflictError):
            await folder_service.rename_folder(y.id, "X")
        assert (await folder_service.get_folder(y.id)).path == "/Root/Y"


class TestMove:
    async def test_cycle_rejected(self, create, folder_service):
        a = await create("A")
        b = await create("B", a)
        c = await create("C", b)
        with pytest.raises(ConflictError):
            await folder_service.move_folder(a.id, c.id)
        with pytest.raises(ConflictError):
            await folder_service.move_folder(a.id, b.id)
        with pytest.raises(ConflictError):
            await folder_service.move_folder(a.id, a.id)
        assert (await folder_service.get_folder(a.id)).path == "/A"

    async def test_noop_move_rejected(self, create, folder_service):
        a = await create("A")
        b = await create("B", a)
        with pytest.raises(ConflictError):
            await folder_service.move_folder(b.id, a.id)
        with pytest.raises(ConflictError):
            await folder_service.move_folder(a.id, None)

    async def test_collision_in_target(self, create, folder_service):
        a = await create("A")
        b = await create("B")
        await create("X", b)
        x = await create("X", a)
        with pytest.raises(ConflictError):
            await folder_service.move_folder(x.id, b.id)

    async def test_owner_mismatch(self, create, folder_service):
        a = await create("A")
        other = await create("Other", owner=uuid.uuid4())
        with pytest.raises(ValidationError):
            await folder_service.move_folder(a.id, other.id)

    async def test_prefix_invariant_after_move(self, create, folder_service, db):
        a = await create("A")
        c = await create("C", a)
        await create("D", c)
        b = await create("B")

        result = await folder_service.move_folder(a.id, b.id)
        assert result.folder.path == "/B/A"
        assert result.folder.parent_id == b.id

        repo = FolderRepository(db)
        moved = await repo.get_by_id(a.id)
        for descendant in await repo.get_descendants_by_parent(a.id):
            assert descendant.path.startswith(moved.path + "/")
        assert [f.path for f in await repo.get_descendants_by_path("/B/A")] == ["/B/A/C", "/B/A/C/D"]

    async def test_reads_current_paths_after_concurrent_rename(
        self, create, folder_service, db, session_factory, storage, redis, notifier
    ):
        a = await create("A")
        c = await create("C", a)
        b = await create("B")
        repo = FolderRepository(db)
        held = [await repo.get_by_id(a.id), await repo.get_by_id(c.id), await repo.get_by_id(b.id)]

        async with session_factory() as other:
            await FolderService(other, storage, redis, notifier).rename_folder(a.id, "Z")

        result = await folder_service.move_folder(c.id, b.id)

        assert result.folder.path == "/B/C"
        assert result.storage_status == "complete"
        assert held[1].path == "/B/C"
        assert "B/C/.foldermarker" in storage.objects
        assert not storage.has("Z/C/*")

    async def test_move_to_root(self, create, folder_service):
        a = await create("A")
        b = await create("B", a)
        result = await folder_service.move_folder(b.id, None)
        assert result.folder.path == "/B"
        assert result.folder.parent_id is None

    async def test_relocation_failure_keeps_metadata(
        self, create, folder_service, document_service, make_upload, user_id, storage, redis
    ):
        a = await create("A")
        b = await create("B")
        doc, _ = await document_service.upload_document(a.id, make_upload(b"0123456789"), user_id)
        storage.fail("copy", doc.object_key)

        with pytest.raises(StorageRelocationError) as exc_info:
            await folder_service.move_folder(a.id, b.id)

        relocation = exc_info.value.data["relocation"]
        assert relocation["failed"][0]["source_key"] == doc.object_key
        assert relocation["failed"][0]["target_key"] == "B/" + doc.object_key
        assert (await folder_service.get_folder(a.id)).path == "/B/A"
        assert await redis.list_length("storage:pending-relocations") == 1

    async def test_held_lock_is_conflict(self, create, folder_service, redis):
        a = await create("A")
        await redis.acquire_lock(f"lock:folder-tree:{a.id}", "someone-else", 60)
        with pytest.raises(ConflictError):
            await folder_service.rename_folder(a.id, "B")
        assert (await folder_service.get_folder(a.id)).name == "A"


class TestDelete:
    async def test_guard_on_subfolder(self, create, folder_service):
        a = await create("A")
        await create("B", a)
        with pytest.raises(ConflictError):
            await folder_service.delete_folder(a.id)
        assert (await folder_service.get_folder(a.id)).id == a.id

    async def test_guard_on_document(self, create, folder_service, document_service, make_upload, user_id):
        a = await create("A")
        await document_service.upload_document(a.id, make_upload(b"data"), user_id)
        with pytest.raises(ConflictError):
            await folder_service.delete_folder(a.id)

    async def test_delete_empty_folder(self, create, folder_service, storage, notifier):
        a = await create("A")
        deleted = await folder_service.delete_folder(a.id)
        assert deleted.path == "/A"
        assert "A/.foldermarker" not in storage.objects
        assert notifier.events[0].action_type == "Folder Deletion"
        with pytest.raises(NotFoundError):
            await folder_service.get_folder(a.id)

    async def test_marker_removal_failure_is_queued(self, create, folder_service, storage, redis):
        a = await create("A")
        storage.fail("delete")
        await folder_service.delete_folder(a.id)
        assert await redis.list_length("storage:pending-deletions") == 1


class TestListing:
    async def test_filters_search_and_pagination(self, create, folder_service, owner_id):
        a = await create("Alpha")
        await create("Beta")
        await create("Gamma", a)

        folders, pagination = await folder_service.list_folders(FolderListParams(owner_id=owner_id, limit=2))
        assert pagination.total == 3
        assert pagination.total_pages == 2
        assert pagination.has_next
        assert len(folders) == 2

        folders, _ = await folder_service.list_folders(FolderListParams(search="gam"))
        assert [f.name for f in folders] == ["Gamma"]

        folders, _ = await folder_service.list_folders(
            FolderListParams(parent_id=a.id, sort_field="name", sort_order="asc")
        )
        assert [f.path for f in folders] == ["/Alpha/Gamma"]

    async def test_contents(self, create, folder_service, document_service, make_upload, user_id):
        a = await create("A")
        await create("B", a)
        await document_service.upload_document(a.id, make_upload(b"data"), user_id)
        contents = await folder_service.get_contents(a.id)
        assert [f.name for f in contents.subfolders] == ["B"]
        assert [d.file_name for d in contents.documents] == ["x.txt"]
        assert contents.documents[0].version == 1
