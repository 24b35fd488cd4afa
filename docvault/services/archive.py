from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
import logging
import uuid
import zipfile

from docvault.core.config import settings
from docvault.core.minio import MinioClient
from docvault.repositories.folder import FolderRepository
from docvault.repositories.document import DocumentRepository
from docvault.utils.exceptions import EmptyFolderError, NotFoundError, StorageUnavailableError
from docvault.utils.paths import archive_entry_path, sanitize_file_name

logger = logging.getLogger(__name__)

MANIFEST_NAME = "MANIFEST.txt"
ZIP_EPOCH = datetime(1980, 1, 1)


@dataclass
class ArchiveEntry:
    name: str
    object_key: str
    size: int
    modified: Optional[datetime] = None


@dataclass
class FolderArchive:
    folder_id: uuid.UUID
    folder_name: str
    folder_path: str
    entries: List[ArchiveEntry] = field(default_factory=list)

    @property
    def file_name(self) -> str:
        return f"{sanitize_file_name(self.folder_name)}.zip"


class _StreamBuffer:
    """Write-only sink for ZipFile; the archive is drained chunk by chunk"""

    def __init__(self):
        self._chunks: List[bytes] = []

    def write(self, data) -> int:
        self._chunks.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


class ArchiveBuilder:
    def __init__(self, db: AsyncSession, storage: MinioClient):
        self.folder_repo = FolderRepository(db)
        self.document_repo = DocumentRepository(db)
        self.storage = storage

    async def prepare(self, folder_id: uuid.UUID) -> FolderArchive:
        """Collect every document of the subtree before streaming starts"""
        folder = await self.folder_repo.get_by_id(folder_id)
        if not folder:
            raise NotFoundError("Folder not found")

        descendants = await self.folder_repo.get_descendants_by_parent(folder.id)
        folder_paths = {folder.id: folder.path}
        folder_paths.update({child.id: child.path for child in descendants})

        documents = await self.document_repo.list_by_folders(folder_paths.keys())
        if not documents:
            raise EmptyFolderError("Folder is empty, nothing to download")

        archive = FolderArchive(folder_id=folder.id, folder_name=folder.name, folder_path=folder.path)
        for document in documents:
            archive.entries.append(ArchiveEntry(
                name=archive_entry_path(folder_paths[document.folder_id], folder.path, document.original_name),
                object_key=document.object_key,
                size=document.file_size,
                modified=document.updated_at or document.created_at,
            ))
        archive.entries.sort(key=lambda entry: entry.name)
        return archive

    def _zip_info(self, entry: ArchiveEntry) -> zipfile.ZipInfo:
        modified = entry.modified or datetime.now(timezone.utc)
        if modified.replace(tzinfo=None) < ZIP_EPOCH:
            modified = ZIP_EPOCH
        info = zipfile.ZipInfo(entry.name, date_time=modified.timetuple()[:6])
        info.compress_type = zipfile.ZIP_DEFLATED
        # Lets zipfile pick zip64 headers up front for large objects
        info.file_size = entry.size
        return info

    async def stream(self, archive: FolderArchive) -> AsyncIterator[bytes]:
        """
        Yield the ZIP archive as it is produced.

        Objects are fetched one at a time; a document that cannot be read is
        logged and left out. With ARCHIVE_MANIFEST_ENABLED a trailing
        MANIFEST.txt lists what was included and skipped.
        """
        buffer = _StreamBuffer()
        included: List[str] = []
        skipped: List[str] = []

        with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED, allowZip64=True) as zf:
            for entry in archive.entries:
                try:
                    obj = await self.storage.get_object(entry.object_key)
                except (NotFoundError, StorageUnavailableError) as e:
                    logger.warning("Skipping %s in archive of %s: %s", entry.name, archive.folder_path, e)
                    skipped.append(entry.name)
                    continue

                try:
                    with zf.open(self._zip_info(entry), mode="w") as target:
                        async for chunk in obj.iter_chunks():
                            target.write(chunk)
                            data = buffer.drain()
                            if data:
                                yield data
                    included.append(entry.name)
                except StorageUnavailableError as e:
                    # The entry is already partly written; it stays truncated
                    logger.error("Archive entry %s truncated: %s", entry.name, e)
                    skipped.append(entry.name)

                data = buffer.drain()
                if data:
                    yield data

            if settings.ARCHIVE_MANIFEST_ENABLED:
                zf.writestr(MANIFEST_NAME, self.render_manifest(archive, included, skipped))

        yield buffer.drain()

        logger.info(
            "Streamed archive of %s: %d included, %d skipped",
            archive.folder_path, len(included), len(skipped)
        )

    @staticmethod
    def render_manifest(archive: FolderArchive, included: List[str], skipped: List[str]) -> str:
        lines = [
            f"folder: {archive.folder_path}",
            f"generated_at: {datetime.now(timezone.utc).isoformat()}",
            f"status: {'complete' if not skipped else 'partial'}",
            "",
            f"included ({len(included)}):",
        ]
        lines.extend(f"  {name}" for name in included)
        lines.append("")
        lines.append(f"skipped ({len(skipped)}):")
        lines.extend(f"  {name}" for name in skipped)
        return "\n".join(lines) + "\n"
