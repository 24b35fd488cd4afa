from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import logging
import uuid

from docvault.core.database import commit_or_raise
from docvault.core.locks import tree_lock
from docvault.core.minio import MinioClient
from docvault.core.redis import RedisClient, redis_client as default_redis_client
from docvault.repositories.folder import FolderRepository
from docvault.repositories.document import DocumentRepository
from docvault.models.folder import Folder
from docvault.schemas.common import Pagination
from docvault.schemas.folder import (
    Folder as FolderSchema,
    FolderContents,
    FolderCreate,
    FolderListParams,
    FolderStructureResult,
)
from docvault.schemas.document import Document as DocumentSchema
from docvault.schemas.storage import RelocationReport
from docvault.services.notifications import NotificationClient, folder_deleted_event, notification_client
from docvault.services.paths import PathPropagator
from docvault.services.stats import StatsAggregator
from docvault.services.storage import StorageSync
from docvault.utils.exceptions import (
    ConflictError,
    InternalError,
    NotFoundError,
    StorageRelocationError,
    StorageUnavailableError,
    ValidationError,
)
from docvault.utils.paths import folder_prefix, generate_folder_path, validate_folder_name

logger = logging.getLogger(__name__)


class FolderService:
    def __init__(
        self,
        db: AsyncSession,
        storage: MinioClient,
        redis_client: Optional[RedisClient] = None,
        notifier: Optional[NotificationClient] = None
    ):
        self.db = db
        self.storage = storage
        self.redis_client = redis_client or default_redis_client
        self.notifier = notifier or notification_client
        self.folder_repo = FolderRepository(db)
        self.document_repo = DocumentRepository(db)
        self.propagator = PathPropagator(db)
        self.storage_sync = StorageSync(storage, self.redis_client)
        self.stats = StatsAggregator(db)

    async def _get_folder(self, folder_id: uuid.UUID, message: str = "Folder not found") -> Folder:
        folder = await self.folder_repo.get_by_id(folder_id)
        if not folder:
            raise NotFoundError(message)
        return folder

    async def _ensure_free(
        self,
        owner_id: uuid.UUID,
        owner_type: str,
        parent_id: Optional[uuid.UUID],
        name: str,
        path: str,
        exclude_id: Optional[uuid.UUID] = None
    ) -> None:
        """Reject a (parent, name) pair or computed path that is already taken"""
        sibling = await self.folder_repo.find_sibling(owner_id, owner_type, parent_id, name, exclude_id)
        if sibling:
            raise ConflictError(f"A folder named '{name}' already exists in this location")
        existing = await self.folder_repo.get_by_path(path)
        if existing and existing.id != exclude_id:
            raise ConflictError(f"A folder with path '{path}' already exists")

    async def get_folder(self, folder_id: uuid.UUID) -> FolderSchema:
        return FolderSchema.model_validate(await self._get_folder(folder_id))

    async def list_folders(self, params: FolderListParams) -> Tuple[List[FolderSchema], Pagination]:
        folders, total = await self.folder_repo.list(params)
        return (
            [FolderSchema.model_validate(f) for f in folders],
            Pagination.build(params.page, params.limit, total),
        )

    async def get_contents(self, folder_id: uuid.UUID) -> FolderContents:
        """Folder with its direct subfolders and direct documents"""
        folder = await self._get_folder(folder_id)
        subfolders = await self.folder_repo.get_children(folder.id)
        documents = await self.document_repo.list_by_folder(folder.id)
        latest = await self.document_repo.latest_version_numbers(d.id for d in documents)
        return FolderContents(
            folder=FolderSchema.model_validate(folder),
            subfolders=[FolderSchema.model_validate(f) for f in subfolders],
            documents=[
                DocumentSchema.model_validate(d).model_copy(update={"version": latest.get(d.id, 1)})
                for d in documents
            ],
        )

    async def create_folder(self, data: FolderCreate) -> FolderSchema:
        name = validate_folder_name(data.name)
        owner_type = data.owner_type.value

        parent_path = None
        if data.parent_id is not None:
            parent = await self._get_folder(data.parent_id, "Parent folder not found")
            if parent.owner_id != data.owner_id or parent.owner_type != owner_type:
                raise ValidationError("Parent folder belongs to a different owner")
            parent_path = parent.path

        path = generate_folder_path(parent_path, name)
        await self._ensure_free(data.owner_id, owner_type, data.parent_id, name, path)

        try:
            folder = await self.folder_repo.create(name, path, data.owner_id, owner_type, data.parent_id)
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning("Folder insert rejected: %s", e.orig)
            raise ConflictError(f"A folder named '{name}' already exists in this location")
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to create folder %s: %s", path, e)
            raise InternalError("Failed to create folder")
        await commit_or_raise(self.db, f"A folder named '{name}' already exists in this location")
        result = FolderSchema.model_validate(folder)

        try:
            await self.storage.create_folder_marker(path)
        except StorageUnavailableError:
            logger.error("Could not create storage marker for %s, removing folder", path)
            await self.folder_repo.delete(folder)
            await commit_or_raise(self.db)
            raise

        logger.info("Created folder %s (%s)", result.id, result.path)
        return result

    def _relocation_failed(self, result: FolderStructureResult, report: RelocationReport) -> StorageRelocationError:
        return StorageRelocationError(
            "Folder metadata updated but some objects could not be relocated",
            data={"folder": result.folder.model_dump(mode="json"), "relocation": report.model_dump()}
        )

    async def _tree_roots(self, *folders: Optional[Folder]) -> List[uuid.UUID]:
        return [await self.folder_repo.get_root_id(f) for f in folders if f is not None]

    async def _reload_locked(
        self,
        folder_id: uuid.UUID,
        locked_roots: List[uuid.UUID],
        message: str = "Folder not found"
    ) -> Folder:
        """Fresh copy of a folder once its tree lock is held; it must still belong to a locked tree"""
        folder = await self._get_folder(folder_id, message)
        if await self.folder_repo.get_root_id(folder) not in locked_roots:
            raise ConflictError("Folder was moved by a concurrent operation, please retry")
        return folder

    async def rename_folder(self, folder_id: uuid.UUID, new_name: str) -> FolderStructureResult:
        name = validate_folder_name(new_name)
        roots = await self._tree_roots(await self._get_folder(folder_id))

        async with tree_lock(self.redis_client, roots):
            # Anything read before the lock may predate a concurrent rename or move
            self.db.expire_all()
            folder = await self._reload_locked(folder_id, roots)
            if name == folder.name:
                raise ConflictError("Folder already has this name")

            parent_path = None
            if folder.parent_id is not None:
                parent = await self._get_folder(folder.parent_id, "Parent folder not found")
                parent_path = parent.path
            new_path = generate_folder_path(parent_path, name)
            await self._ensure_free(
                folder.owner_id, folder.owner_type, folder.parent_id, name, new_path, exclude_id=folder.id
            )

            old_path = folder.path
            folder.name = name
            moves = await self.propagator.rewrite(folder, new_path)
            await commit_or_raise(self.db, f"A folder named '{name}' already exists in this location")
            report = await self.storage_sync.relocate(moves)

        result = FolderStructureResult(
            folder=FolderSchema.model_validate(folder),
            storage_status=report.storage_status,
            objects_moved=len(report.moved),
        )
        logger.info("Renamed folder %s: %s -> %s", folder_id, old_path, new_path)
        if not report.ok:
            raise self._relocation_failed(result, report)
        return result

    async def move_folder(self, folder_id: uuid.UUID, target_parent_id: Optional[uuid.UUID]) -> FolderStructureResult:
        """
        Re-parent a folder (None moves it to the root level).

        Validation happens under the tree lock, before anything is changed:
        the target must exist and share the owner, must not be the folder
        itself or one of its descendants, must differ from the current parent
        and must not hold a folder with the same name.
        """
        folder = await self._get_folder(folder_id)
        if target_parent_id == folder.id:
            raise ConflictError("Cannot move a folder into itself")
        target = None
        if target_parent_id is not None:
            target = await self._get_folder(target_parent_id, "Target parent folder not found")
        roots = await self._tree_roots(folder, target)

        async with tree_lock(self.redis_client, roots):
            # Anything read before the lock may predate a concurrent rename or move
            self.db.expire_all()
            folder = await self._reload_locked(folder_id, roots)
            target_path = None
            if target_parent_id is not None:
                target = await self._reload_locked(target_parent_id, roots, "Target parent folder not found")
                if target.owner_id != folder.owner_id or target.owner_type != folder.owner_type:
                    raise ValidationError("Target folder belongs to a different owner")
                if await self.folder_repo.is_ancestor_of(folder.id, target.id):
                    raise ConflictError("Cannot move a folder into one of its own subfolders")
                target_path = target.path

            if target_parent_id == folder.parent_id:
                raise ConflictError("Folder is already in the target location")

            new_path = generate_folder_path(target_path, folder.name)
            await self._ensure_free(
                folder.owner_id, folder.owner_type, target_parent_id, folder.name, new_path, exclude_id=folder.id
            )

            old_parent_id = folder.parent_id
            old_path = folder.path
            folder.parent_id = target_parent_id
            moves = await self.propagator.rewrite(folder, new_path)
            await commit_or_raise(self.db, f"A folder named '{folder.name}' already exists in the target location")
            report = await self.storage_sync.relocate(moves)

        result = FolderStructureResult(
            folder=FolderSchema.model_validate(folder),
            storage_status=report.storage_status,
            objects_moved=len(report.moved),
        )
        await self.stats.refresh([old_parent_id, target_parent_id])

        logger.info("Moved folder %s: %s -> %s", folder_id, old_path, new_path)
        if not report.ok:
            raise self._relocation_failed(result, report)
        return result

    async def delete_folder(self, folder_id: uuid.UUID, ip_address: Optional[str] = None) -> FolderSchema:
        """Delete an empty folder; never cascades"""
        folder = await self._get_folder(folder_id)
        if await self.folder_repo.count_children(folder.id):
            raise ConflictError("Cannot delete folder that contains subfolders")
        if await self.document_repo.count_in_folder(folder.id):
            raise ConflictError("Cannot delete folder that contains documents")

        snapshot = FolderSchema.model_validate(folder)
        try:
            await self.folder_repo.delete(folder)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to delete folder %s: %s", folder_id, e)
            raise InternalError("Failed to delete folder")
        await commit_or_raise(self.db, "Folder is no longer empty")

        await self.storage_sync.discard_prefix(f"{folder_prefix(snapshot.path)}/", f"folder {snapshot.id} deleted")

        logger.info("Deleted folder %s (%s)", snapshot.id, snapshot.path)
        self.notifier.dispatch(folder_deleted_event(snapshot, ip_address))
        return snapshot

    async def recompute_stats(self, folder_id: uuid.UUID) -> FolderSchema:
        try:
            folder = await self.stats.recompute(folder_id)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to recompute stats for %s: %s", folder_id, e)
            raise InternalError("Failed to recompute folder stats")
        return FolderSchema.model_validate(folder)
