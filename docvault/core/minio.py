from minio import Minio
from minio.commonconfig import CopySource
from minio.error import S3Error
from fastapi.concurrency import run_in_threadpool
from typing import AsyncIterator, BinaryIO, List, Optional, Tuple
from urllib3.exceptions import HTTPError as Urllib3HTTPError
import io
import logging

from docvault.core.config import settings
from docvault.utils.exceptions import NotFoundError, StorageUnavailableError
from docvault.utils.paths import FOLDER_MARKER, folder_prefix

logger = logging.getLogger(__name__)

MISSING_OBJECT_CODES = {"NoSuchKey", "NoSuchObject", "NoSuchVersion"}


def _translate_error(e: Exception, object_key: Optional[str] = None) -> Exception:
    """Map MinIO / transport failures onto application errors"""
    if isinstance(e, S3Error) and e.code in MISSING_OBJECT_CODES:
        return NotFoundError(f"Object not found in storage: {object_key}")
    return StorageUnavailableError(f"Storage operation failed: {e}")


class ObjectStream:
    """Open object download; yields chunks and releases the connection when done"""

    def __init__(self, response, chunk_size: int):
        self._response = response
        self._chunk_size = chunk_size
        self._closed = False

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        iterator = self._response.stream(self._chunk_size)
        try:
            while True:
                try:
                    chunk = await run_in_threadpool(next, iterator, None)
                except (Urllib3HTTPError, OSError) as e:
                    raise StorageUnavailableError(f"Storage stream interrupted: {e}")
                if chunk is None:
                    break
                yield chunk
        finally:
            await self.close()

    async def read(self) -> bytes:
        buffer = io.BytesIO()
        async for chunk in self.iter_chunks():
            buffer.write(chunk)
        return buffer.getvalue()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._response.close()
        self._response.release_conn()


class MinioClient:
    def __init__(self):
        self.client = Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ROOT_USER,
            secret_key=settings.MINIO_ROOT_PASSWORD,
            secure=settings.MINIO_SECURE
        )
        self.bucket_name = settings.MINIO_BUCKET_NAME
        self.chunk_size = settings.STORAGE_CHUNK_SIZE

    async def _call(self, func, *args, object_key: Optional[str] = None, **kwargs):
        try:
            return await run_in_threadpool(func, *args, **kwargs)
        except (S3Error, Urllib3HTTPError, OSError) as e:
            raise _translate_error(e, object_key)

    async def ensure_bucket_exists(self):
        """Ensure the bucket exists, create if not"""
        if not await self._call(self.client.bucket_exists, self.bucket_name):
            await self._call(self.client.make_bucket, self.bucket_name)
            logger.info("Created bucket %s", self.bucket_name)

    async def put_object(
        self,
        object_key: str,
        data: BinaryIO,
        size: int,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict] = None
    ) -> str:
        """Upload a stream of known size; overwrites an existing object"""
        await self._call(
            self.client.put_object,
            self.bucket_name,
            object_key,
            data,
            size,
            content_type=content_type,
            metadata=metadata or {},
            object_key=object_key,
        )
        return object_key

    async def get_object(self, object_key: str) -> ObjectStream:
        """Open an object for streaming; raises NotFoundError when absent"""
        response = await self._call(self.client.get_object, self.bucket_name, object_key, object_key=object_key)
        return ObjectStream(response, self.chunk_size)

    async def object_exists(self, object_key: str) -> bool:
        """Check if an object exists"""
        try:
            await self._call(self.client.stat_object, self.bucket_name, object_key, object_key=object_key)
            return True
        except NotFoundError:
            return False

    async def delete_object(self, object_key: str) -> bool:
        """Best-effort delete; returns False instead of raising"""
        try:
            await self._call(self.client.remove_object, self.bucket_name, object_key, object_key=object_key)
            return True
        except (NotFoundError, StorageUnavailableError) as e:
            logger.warning("Failed to delete object %s: %s", object_key, e)
            return False

    async def copy_object(self, source_key: str, target_key: str) -> None:
        await self._call(
            self.client.copy_object,
            self.bucket_name,
            target_key,
            CopySource(self.bucket_name, source_key),
            object_key=source_key,
        )

    async def move_object(self, source_key: str, target_key: str) -> bool:
        """Copy then delete; returns False when the source is left behind"""
        await self.copy_object(source_key, target_key)
        removed = await self.delete_object(source_key)
        if not removed:
            logger.warning("Object %s copied to %s but the source could not be removed", source_key, target_key)
        return removed

    async def list_objects(self, prefix: str) -> List[str]:
        """List every object key under a prefix (recursive)"""
        def _list():
            return [obj.object_name for obj in self.client.list_objects(self.bucket_name, prefix=prefix, recursive=True)]

        return await self._call(_list)

    async def create_folder_marker(self, folder_path: str) -> str:
        """Write the empty marker object that makes a folder visible in the bucket"""
        object_key = f"{folder_prefix(folder_path)}/{FOLDER_MARKER}"
        await self.put_object(object_key, io.BytesIO(b""), 0, content_type="text/plain")
        return object_key

    async def delete_prefix(self, prefix: str) -> Tuple[int, List[str]]:
        """Remove all objects under a prefix; returns (deleted count, failed keys)"""
        deleted, failed = 0, []
        for object_key in await self.list_objects(prefix):
            if await self.delete_object(object_key):
                deleted += 1
            else:
                failed.append(object_key)
        return deleted, failed


# Global MinIO client instance
minio_client = MinioClient()


async def get_minio() -> MinioClient:
    """Dependency to get MinIO client"""
    return minio_client
