from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple
import logging

from docvault.core.minio import MinioClient
from docvault.core.redis import RedisClient, redis_client as default_redis_client
from docvault.schemas.storage import ObjectMove, RelocationReport
from docvault.utils.exceptions import NotFoundError, StorageUnavailableError

logger = logging.getLogger(__name__)

PENDING_RELOCATIONS_KEY = "storage:pending-relocations"
PENDING_DELETIONS_KEY = "storage:pending-deletions"


class StorageSync:
    """
    Applies object storage side effects after a metadata commit.

    Nothing here is transactional with the database: failed relocations and
    deletions are reported to the caller and queued in Redis so that
    StorageReconciler can retry them later.
    """

    def __init__(self, storage: MinioClient, redis_client: Optional[RedisClient] = None):
        self.storage = storage
        self.redis_client = redis_client or default_redis_client

    async def relocate(self, moves: Iterable[Tuple[str, str]]) -> RelocationReport:
        """Copy-then-delete every (source, target) pair"""
        report = RelocationReport()
        for source_key, target_key in moves:
            if source_key == target_key:
                continue
            try:
                source_removed = await self.storage.move_object(source_key, target_key)
            except (NotFoundError, StorageUnavailableError) as e:
                logger.error("Failed to relocate %s -> %s: %s", source_key, target_key, e)
                report.failed.append(ObjectMove(source_key=source_key, target_key=target_key, error=str(e)))
                continue
            if not source_removed:
                await self.queue_deletion(source_key, "leftover after relocation")
            report.moved.append(ObjectMove(source_key=source_key, target_key=target_key))

        for failed in report.failed:
            await self.queue_relocation(failed)
        return report

    async def discard(self, object_keys: Iterable[str], reason: str) -> List[str]:
        """Best-effort delete; returns the keys that could not be removed"""
        failed = []
        for object_key in object_keys:
            if not await self.storage.delete_object(object_key):
                failed.append(object_key)
                await self.queue_deletion(object_key, reason)
        return failed

    async def discard_prefix(self, prefix: str, reason: str) -> List[str]:
        try:
            _, failed = await self.storage.delete_prefix(prefix)
        except StorageUnavailableError as e:
            logger.warning("Could not list objects under %s for deletion: %s", prefix, e)
            await self.queue_deletion(prefix, reason, prefix=True)
            return [prefix]
        for object_key in failed:
            await self.queue_deletion(object_key, reason)
        return failed

    async def queue_relocation(self, move: ObjectMove) -> None:
        queued = await self.redis_client.push_json(PENDING_RELOCATIONS_KEY, {
            "source_key": move.source_key,
            "target_key": move.target_key,
            "error": move.error,
            "failed_at": datetime.now(timezone.utc).isoformat(),
        })
        if not queued:
            logger.error(
                "Relocation %s -> %s needs manual repair (repair queue unavailable)",
                move.source_key, move.target_key
            )

    async def queue_deletion(self, object_key: str, reason: str, prefix: bool = False) -> None:
        queued = await self.redis_client.push_json(PENDING_DELETIONS_KEY, {
            "object_key": object_key,
            "prefix": prefix,
            "reason": reason,
            "failed_at": datetime.now(timezone.utc).isoformat(),
        })
        if not queued:
            logger.warning("Orphaned object %s was not queued for sweep (%s)", object_key, reason)
