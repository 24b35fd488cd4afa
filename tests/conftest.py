import fnmatch
import io
import os
import uuid
from typing import Dict, List, Optional, Set

os.environ["DATABASE_URI"] = "sqlite+aiosqlite://"
os.environ["DEBUG"] = "false"
os.environ["NOTIFICATION_SERVICE_URL"] = ""

import pytest
import pytest_asyncio
from fastapi import UploadFile
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.datastructures import Headers

import docvault.models  # noqa: F401
from docvault.core.config import settings
from docvault.core.database import Base, get_db
from docvault.core.minio import get_minio
from docvault.core.redis import RedisClient, get_redis
from docvault.main import app
from docvault.services.notifications import NotificationClient, get_notifier
from docvault.utils.exceptions import NotFoundError, StorageUnavailableError
from docvault.utils.paths import FOLDER_MARKER, folder_prefix


class FakeObjectStream:
    def __init__(self, data: bytes, chunk_size: int = 4, fail_after_first_chunk: bool = False):
        self._data = data
        self._chunk_size = chunk_size
        self._fail = fail_after_first_chunk
        self.closed = False

    async def iter_chunks(self):
        try:
            for offset in range(0, len(self._data), self._chunk_size):
                if self._fail and offset > 0:
                    raise StorageUnavailableError("Storage stream interrupted: connection reset")
                yield self._data[offset:offset + self._chunk_size]
        finally:
            await self.close()

    async def read(self) -> bytes:
        return b"".join([chunk async for chunk in self.iter_chunks()])

    async def close(self):
        self.closed = True


class FakeStorage:
    """In-memory object storage with the MinioClient interface and failure injection"""

    def __init__(self):
        self.bucket_name = "test-bucket"
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.failures: Dict[str, Set[str]] = {}

    def fail(self, operation: str, object_key: str = "*") -> None:
        self.failures.setdefault(operation, set()).add(object_key)

    def heal(self) -> None:
        self.failures.clear()

    def _should_fail(self, operation: str, object_key: Optional[str]) -> bool:
        patterns = self.failures.get(operation, set())
        return any(fnmatch.fnmatchcase(object_key or "", pattern) for pattern in patterns)

    def key(self, pattern: str) -> str:
        """The single stored key matching a glob such as ``A/x-v1-*.txt``"""
        matches = [k for k in self.objects if fnmatch.fnmatchcase(k, pattern)]
        assert len(matches) == 1, f"{pattern!r} matched {matches}"
        return matches[0]

    def has(self, pattern: str) -> bool:
        return any(fnmatch.fnmatchcase(k, pattern) for k in self.objects)

    def _check(self, operation: str, object_key: Optional[str] = None) -> None:
        if self._should_fail(operation, object_key):
            raise StorageUnavailableError(f"Storage operation failed: {operation} {object_key}")

    async def ensure_bucket_exists(self):
        self._check("bucket")

    async def put_object(self, object_key, data, size, content_type="application/octet-stream", metadata=None):
        self._check("put", object_key)
        self.objects[object_key] = data.read(size) if size else b""
        self.content_types[object_key] = content_type
        return object_key

    async def get_object(self, object_key):
        self._check("get", object_key)
        if object_key not in self.objects:
            raise NotFoundError(f"Object not found in storage: {object_key}")
        return FakeObjectStream(self.objects[object_key], fail_after_first_chunk=self._should_fail("stream", object_key))

    async def object_exists(self, object_key):
        self._check("stat", object_key)
        return object_key in self.objects

    async def delete_object(self, object_key):
        if self._should_fail("delete", object_key):
            return False
        self.objects.pop(object_key, None)
        return True

    async def copy_object(self, source_key, target_key):
        self._check("copy", source_key)
        if source_key not in self.objects:
            raise NotFoundError(f"Object not found in storage: {source_key}")
        self.objects[target_key] = self.objects[source_key]

    async def move_object(self, source_key, target_key):
        await self.copy_object(source_key, target_key)
        return await self.delete_object(source_key)

    async def list_objects(self, prefix):
        self._check("list", prefix)
        return sorted(key for key in self.objects if key.startswith(prefix))

    async def create_folder_marker(self, folder_path):
        object_key = f"{folder_prefix(folder_path)}/{FOLDER_MARKER}"
        return await self.put_object(object_key, io.BytesIO(b""), 0, content_type="text/plain")

    async def delete_prefix(self, prefix):
        deleted, failed = 0, []
        for object_key in await self.list_objects(prefix):
            if await self.delete_object(object_key):
                deleted += 1
            else:
                failed.append(object_key)
        return deleted, failed


class FakeRedis:
    """The handful of redis.asyncio commands RedisClient uses"""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.lists: Dict[str, List[str]] = {}

    async def ping(self):
        return True

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def eval(self, script, numkeys, key, token):
        if self.values.get(key) == token:
            del self.values[key]
            return 1
        return 0

    async def rpush(self, key, value):
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    async def lpop(self, key):
        items = self.lists.get(key)
        if not items:
            return None
        return items.pop(0)

    async def llen(self, key):
        return len(self.lists.get(key, []))

    async def close(self):
        pass


class RecordingNotifier(NotificationClient):
    def __init__(self):
        super().__init__(base_url="")
        self.events = []

    def dispatch(self, event):
        self.events.append(event)
        return None


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def redis():
    client = RedisClient()
    client.redis = FakeRedis()
    return client


@pytest.fixture
def offline_redis():
    return RedisClient()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def owner_id():
    return uuid.uuid4()


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def make_upload():
    def _make(content: bytes, filename: str = "x.txt", content_type: str = "text/plain") -> UploadFile:
        return UploadFile(
            file=io.BytesIO(content),
            filename=filename,
            headers=Headers({"content-type": content_type})
        )
    return _make


@pytest.fixture
def manifest_enabled():
    original = settings.ARCHIVE_MANIFEST_ENABLED
    settings.ARCHIVE_MANIFEST_ENABLED = True
    yield
    settings.ARCHIVE_MANIFEST_ENABLED = original


@pytest_asyncio.fixture
async def client(session_factory, storage, redis, notifier):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_minio():
        return storage

    async def override_get_redis():
        return redis

    async def override_get_notifier():
        return notifier

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_minio] = override_get_minio
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_notifier] = override_get_notifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()
