import redis.asyncio as redis
from typing import List, Optional
import json
import uuid

from docvault.core.config import settings

# Compare-and-delete so a lock is only released by its holder
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class UUIDEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles UUID objects"""
    def default(self, obj):
        if isinstance(obj, uuid.UUID):
            return str(obj)
        return super().default(obj)


class RedisClient:
    def __init__(self):
        self.redis: Optional[redis.Redis] = None

    @property
    def is_connected(self) -> bool:
        return self.redis is not None

    async def connect(self):
        """Connect to Redis"""
        self.redis = await redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True
        )

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.close()
            self.redis = None

    async def ping(self) -> bool:
        if not self.redis:
            return False
        return await self.redis.ping()

    async def acquire_lock(self, key: str, token: str, expire: int) -> bool:
        """SET NX with expiry; False when someone else holds the lock"""
        if not self.redis:
            return False
        return bool(await self.redis.set(key, token, nx=True, ex=expire))

    async def release_lock(self, key: str, token: str) -> bool:
        if not self.redis:
            return False
        return await self.redis.eval(RELEASE_LOCK_SCRIPT, 1, key, token) == 1

    async def push_json(self, key: str, value: dict) -> bool:
        """Append a JSON document to a list"""
        if not self.redis:
            return False
        await self.redis.rpush(key, json.dumps(value, cls=UUIDEncoder))
        return True

    async def pop_json(self, key: str, count: int) -> List[dict]:
        """Pop up to count JSON documents from the head of a list"""
        if not self.redis:
            return []
        items = []
        for _ in range(count):
            value = await self.redis.lpop(key)
            if value is None:
                break
            try:
                items.append(json.loads(value))
            except json.JSONDecodeError:
                continue
        return items

    async def list_length(self, key: str) -> int:
        if not self.redis:
            return 0
        return await self.redis.llen(key)


# Global Redis client instance
redis_client = RedisClient()


async def get_redis() -> RedisClient:
    """Dependency to get Redis client"""
    return redis_client
