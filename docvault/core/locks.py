from contextlib import asynccontextmanager
from typing import Iterable
import logging
import uuid

from docvault.core.config import settings
from docvault.core.redis import RedisClient
from docvault.utils.exceptions import ConflictError

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "lock:folder-tree:"


@asynccontextmanager
async def tree_lock(redis_client: RedisClient, root_ids: Iterable[uuid.UUID]):
    """
    Advisory lock over one or more folder trees, keyed by root folder id.

    Concurrent renames/moves touching the same tree fail with ConflictError
    instead of interleaving their path rewrites. Without a Redis connection the
    block runs unlocked.
    """
    keys = sorted({f"{LOCK_KEY_PREFIX}{root_id}" for root_id in root_ids})
    if not settings.STRUCTURE_LOCKS_ENABLED or not keys:
        yield
        return
    if not redis_client.is_connected:
        logger.warning("Redis unavailable, running structural operation without tree lock")
        yield
        return

    token = uuid.uuid4().hex
    acquired = []
    try:
        for key in keys:
            if not await redis_client.acquire_lock(key, token, settings.STRUCTURE_LOCK_TTL_SECONDS):
                raise ConflictError("Another structural operation is in progress on this folder tree")
            acquired.append(key)
        yield
    finally:
        for key in acquired:
            await redis_client.release_lock(key, token)
