from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import logging
import uuid

from docvault.core.minio import MinioClient
from docvault.core.redis import RedisClient, redis_client as default_redis_client
from docvault.repositories.folder import FolderRepository
from docvault.repositories.document import DocumentRepository
from docvault.schemas.storage import IntegrityReport, MissingObject, ObjectMove, ReconcileResult
from docvault.services.storage import PENDING_DELETIONS_KEY, PENDING_RELOCATIONS_KEY, StorageSync
from docvault.utils.exceptions import NotFoundError, StorageUnavailableError

logger = logging.getLogger(__name__)


class StorageReconciler:
    """Repairs storage after partial failures and verifies folder subtrees"""

    def __init__(self, db: AsyncSession, storage: MinioClient, redis_client: Optional[RedisClient] = None):
        self.storage = storage
        self.redis_client = redis_client or default_redis_client
        self.storage_sync = StorageSync(storage, self.redis_client)
        self.folder_repo = FolderRepository(db)
        self.document_repo = DocumentRepository(db)

    async def _retry_relocation(self, move: ObjectMove, result: ReconcileResult) -> None:
        source_exists = await self.storage.object_exists(move.source_key)
        target_exists = await self.storage.object_exists(move.target_key)

        if not source_exists:
            if target_exists:
                result.relocations_completed += 1
            else:
                logger.error("Object lost during relocation %s -> %s", move.source_key, move.target_key)
                result.relocations_lost += 1
            return

        if not await self.storage.move_object(move.source_key, move.target_key):
            await self.storage_sync.queue_deletion(move.source_key, "leftover after relocation retry")
        result.relocations_completed += 1

    async def reconcile(self, limit: int = 100) -> ReconcileResult:
        """Retry up to limit queued relocations and limit queued deletions"""
        result = ReconcileResult()

        for item in await self.redis_client.pop_json(PENDING_RELOCATIONS_KEY, limit):
            move = ObjectMove(source_key=item["source_key"], target_key=item["target_key"])
            result.relocations_retried += 1
            try:
                await self._retry_relocation(move, result)
            except (NotFoundError, StorageUnavailableError) as e:
                move.error = str(e)
                await self.storage_sync.queue_relocation(move)
                result.relocations_requeued += 1

        for item in await self.redis_client.pop_json(PENDING_DELETIONS_KEY, limit):
            object_key = item["object_key"]
            reason = item.get("reason") or "retry"
            result.deletions_retried += 1
            if item.get("prefix"):
                failed = await self.storage_sync.discard_prefix(object_key, reason)
            else:
                failed = await self.storage_sync.discard([object_key], reason)
            if failed:
                result.deletions_requeued += 1
            else:
                result.deletions_completed += 1

        logger.info("Storage reconcile finished: %s", result.model_dump())
        return result

    async def verify_folder(self, folder_id: uuid.UUID) -> IntegrityReport:
        """Check that every version object below a folder exists in storage"""
        folder = await self.folder_repo.get_by_id(folder_id)
        if not folder:
            raise NotFoundError("Folder not found")

        descendants = await self.folder_repo.get_descendants_by_parent(folder.id)
        folder_ids = [folder.id] + [child.id for child in descendants]
        documents = await self.document_repo.list_by_folders(folder_ids)
        versions = await self.document_repo.list_versions_for(d.id for d in documents)

        report = IntegrityReport(folder_id=folder.id, folders_checked=len(folder_ids), objects_checked=0)
        for version in sorted(versions, key=lambda v: (str(v.document_id), v.version)):
            report.objects_checked += 1
            if not await self.storage.object_exists(version.object_key):
                report.missing.append(MissingObject(
                    document_id=version.document_id,
                    version=version.version,
                    object_key=version.object_key,
                ))

        if report.missing:
            logger.warning("Folder %s has %d missing object(s)", folder.path, len(report.missing))
        return report
