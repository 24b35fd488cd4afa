from typing import Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import UploadFile
import logging
import uuid

from docvault.core.database import commit_or_raise
from docvault.core.locks import tree_lock
from docvault.core.minio import MinioClient, ObjectStream
from docvault.core.redis import RedisClient, redis_client as default_redis_client
from docvault.repositories.document import DocumentRepository
from docvault.repositories.folder import FolderRepository
from docvault.models.document import Document
from docvault.models.folder import Folder
from docvault.schemas.document import (
    Document as DocumentSchema,
    DocumentUpdate,
    DocumentVersion as DocumentVersionSchema,
)
from docvault.schemas.storage import RelocationReport
from docvault.services.notifications import NotificationClient, document_deleted_event, notification_client
from docvault.services.stats import StatsAggregator
from docvault.services.storage import StorageSync
from docvault.services.versions import VersionManager
from docvault.utils.exceptions import ConflictError, NotFoundError, StorageRelocationError
from docvault.utils.files import measure_upload
from docvault.utils.paths import document_path, folder_prefix, replace_path_prefix, validate_file_name

logger = logging.getLogger(__name__)


class DocumentService:
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
        self.document_repo = DocumentRepository(db)
        self.folder_repo = FolderRepository(db)
        self.storage_sync = StorageSync(storage, self.redis_client)
        self.versions = VersionManager(db, storage, self.storage_sync)
        self.stats = StatsAggregator(db)

    async def _get_document(self, document_id: uuid.UUID) -> Document:
        document = await self.document_repo.get_by_id(document_id)
        if not document:
            raise NotFoundError("Document not found")
        return document

    async def _get_folder(self, folder_id: uuid.UUID, message: str = "Folder not found") -> Folder:
        folder = await self.folder_repo.get_by_id(folder_id)
        if not folder:
            raise NotFoundError(message)
        return folder

    async def _to_schema(self, document: Document, version: Optional[int] = None) -> DocumentSchema:
        if version is None:
            version = await self.document_repo.max_version(document.id) or 1
        return DocumentSchema.model_validate(document).model_copy(update={"version": version})

    async def _to_schemas(self, documents: List[Document]) -> List[DocumentSchema]:
        latest: Dict[uuid.UUID, int] = await self.document_repo.latest_version_numbers(d.id for d in documents)
        return [
            DocumentSchema.model_validate(d).model_copy(update={"version": latest.get(d.id, 1)})
            for d in documents
        ]

    async def get_document(self, document_id: uuid.UUID) -> DocumentSchema:
        return await self._to_schema(await self._get_document(document_id))

    async def list_documents(self, folder_id: uuid.UUID) -> List[DocumentSchema]:
        folder = await self._get_folder(folder_id)
        return await self._to_schemas(await self.document_repo.list_by_folder(folder.id))

    async def update_document(self, document_id: uuid.UUID, data: DocumentUpdate) -> DocumentSchema:
        """Update descriptive metadata (description, tags)"""
        document = await self._get_document(document_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(document, field, value)
        await commit_or_raise(self.db)
        return await self._to_schema(document)

    async def upload_document(
        self,
        folder_id: uuid.UUID,
        upload: UploadFile,
        user_id: uuid.UUID,
        description: Optional[str] = None,
        tags: Optional[str] = None
    ) -> Tuple[DocumentSchema, bool]:
        """
        Upload into a folder.

        A new file name creates the document at version 1; an existing one in
        the same folder becomes its next version. Returns (document, created).
        """
        folder = await self._get_folder(folder_id)
        file_name = validate_file_name(upload.filename)
        checksum, size = measure_upload(upload)

        existing = await self.document_repo.get_by_folder_and_name(folder.id, file_name)
        if existing:
            version = await self.versions.add_version(existing, folder, upload, checksum, size, user_id)
            result = await self._to_schema(existing, version.version)
            created = False
        else:
            document, version = await self.versions.create_document(
                folder, upload, file_name, checksum, size, user_id, description, tags
            )
            result = await self._to_schema(document, version.version)
            created = True

        await self.stats.refresh([folder_id])
        return result, created

    async def upload_version(self, document_id: uuid.UUID, upload: UploadFile, user_id: uuid.UUID) -> DocumentSchema:
        document = await self._get_document(document_id)
        folder = await self._get_folder(document.folder_id)
        checksum, size = measure_upload(upload)

        version = await self.versions.add_version(document, folder, upload, checksum, size, user_id)
        result = await self._to_schema(document, version.version)
        await self.stats.refresh([folder.id])
        return result

    async def list_versions(self, document_id: uuid.UUID) -> List[DocumentVersionSchema]:
        document = await self._get_document(document_id)
        versions = await self.document_repo.list_versions(document.id)
        return [DocumentVersionSchema.model_validate(v) for v in versions]

    async def get_latest_version(self, document_id: uuid.UUID) -> DocumentVersionSchema:
        document = await self._get_document(document_id)
        version = await self.document_repo.get_latest_version(document.id)
        if not version:
            raise NotFoundError("Document has no versions")
        return DocumentVersionSchema.model_validate(version)

    async def open_download(self, document_id: uuid.UUID) -> Tuple[DocumentSchema, ObjectStream]:
        document = await self._get_document(document_id)
        result = await self._to_schema(document)
        stream = await self.storage.get_object(document.object_key)
        return result, stream

    async def open_version_download(
        self,
        document_id: uuid.UUID,
        version_number: int
    ) -> Tuple[DocumentSchema, DocumentVersionSchema, ObjectStream]:
        document = await self._get_document(document_id)
        version = await self.document_repo.get_version(document.id, version_number)
        if not version:
            raise NotFoundError(f"Version {version_number} not found")
        result = await self._to_schema(document)
        stream = await self.storage.get_object(version.object_key)
        return result, DocumentVersionSchema.model_validate(version), stream

    async def move_document(
        self,
        document_id: uuid.UUID,
        target_folder_id: uuid.UUID
    ) -> Tuple[DocumentSchema, RelocationReport]:
        """
        Move a document (all versions) into another folder.

        Paths and object keys are rewritten in one transaction; the objects
        follow after the commit.
        """
        document = await self._get_document(document_id)
        target = await self._get_folder(target_folder_id, "Target folder not found")
        source = await self._get_folder(document.folder_id)
        roots = [await self.folder_repo.get_root_id(source), await self.folder_repo.get_root_id(target)]

        async with tree_lock(self.redis_client, roots):
            # Anything read before the lock may predate a concurrent rename or move
            self.db.expire_all()
            document = await self._get_document(document_id)
            target = await self._get_folder(target_folder_id, "Target folder not found")
            source = await self._get_folder(document.folder_id)
            for folder in (source, target):
                if await self.folder_repo.get_root_id(folder) not in roots:
                    raise ConflictError("Folder was moved by a concurrent operation, please retry")
            if document.folder_id == target.id:
                raise ConflictError("Document is already in the target folder")
            if await self.document_repo.get_by_folder_and_name(target.id, document.file_name):
                raise ConflictError(f"A document named '{document.file_name}' already exists in the target folder")

            source_id = source.id
            old_prefix = folder_prefix(source.path)
            new_prefix = folder_prefix(target.path)
            moves: Dict[str, str] = {}

            for version in await self.document_repo.list_versions(document.id):
                new_key = replace_path_prefix(version.object_key, old_prefix, new_prefix)
                if new_key != version.object_key:
                    moves[version.object_key] = new_key
                    version.object_key = new_key

            new_key = replace_path_prefix(document.object_key, old_prefix, new_prefix)
            moves.setdefault(document.object_key, new_key)
            document.object_key = new_key
            document.folder_id = target.id
            document.path = document_path(target.path, document.file_name)

            await commit_or_raise(self.db, "A document with this name was created concurrently")
            report = await self.storage_sync.relocate(moves.items())

        result = await self._to_schema(document)
        await self.stats.refresh([source_id, target.id])

        logger.info(
            "Moved document %s to %s (%d objects, %d failed)",
            result.id, result.path, len(report.moved), len(report.failed)
        )
        if not report.ok:
            raise StorageRelocationError(
                "Document moved but some objects could not be relocated",
                data={"document": result.model_dump(mode="json"), "relocation": report.model_dump()}
            )
        return result, report

    async def copy_document(
        self,
        document_id: uuid.UUID,
        target_folder_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None
    ) -> DocumentSchema:
        source = await self._get_document(document_id)
        target = await self._get_folder(target_folder_id, "Target folder not found")

        document, version = await self.versions.copy_document(source, target, user_id)
        result = await self._to_schema(document, version.version)
        await self.stats.refresh([target.id])
        return result

    async def delete_document(self, document_id: uuid.UUID, ip_address: Optional[str] = None) -> DocumentSchema:
        document = await self._get_document(document_id)
        folder = await self.folder_repo.get_by_id(document.folder_id)
        owner_id = folder.owner_id if folder else None
        snapshot = await self._to_schema(document)

        await self.versions.purge_document(document)
        await self.stats.refresh([snapshot.folder_id])

        logger.info("Deleted document %s (%s)", snapshot.id, snapshot.path)
        self.notifier.dispatch(document_deleted_event(snapshot, owner_id, ip_address))
        return snapshot
