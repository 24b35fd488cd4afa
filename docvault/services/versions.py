from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from fastapi import UploadFile
import logging
import os
import uuid
from urllib.parse import quote

from docvault.core.config import settings
from docvault.core.minio import MinioClient
from docvault.repositories.document import DocumentRepository
from docvault.models.document import Document, DocumentVersion
from docvault.models.folder import Folder
from docvault.services.storage import StorageSync
from docvault.utils.exceptions import ConflictError, InternalError
from docvault.utils.paths import (
    copy_name_candidate,
    copy_name_fallback,
    document_path,
    generate_object_key,
)

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


class VersionManager:
    """
    Owns document content: version numbering, object keys and the
    denormalized latest-version fields of Document.

    Every write puts the object first and the metadata second; when the
    metadata commit fails the freshly written object is removed again.
    """

    def __init__(self, db: AsyncSession, storage: MinioClient, storage_sync: StorageSync):
        self.db = db
        self.document_repo = DocumentRepository(db)
        self.storage = storage
        self.storage_sync = storage_sync

    async def _compensate(self, error: SQLAlchemyError, object_key: str) -> None:
        """Roll back, remove the object written for this request and raise"""
        await self.db.rollback()
        logger.error("Metadata write failed, removing orphaned object %s: %s", object_key, error)
        await self.storage_sync.discard([object_key], "compensating delete after failed metadata write")
        if isinstance(error, IntegrityError):
            raise ConflictError("Document was modified concurrently, please retry")
        raise InternalError("Failed to save document metadata")

    async def _commit_or_compensate(self, object_key: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self._compensate(e, object_key)

    async def create_document(
        self,
        folder: Folder,
        upload: UploadFile,
        file_name: str,
        checksum: str,
        size: int,
        user_id: uuid.UUID,
        description: Optional[str] = None,
        tags: Optional[str] = None
    ) -> Tuple[Document, DocumentVersion]:
        """First upload of file_name into folder (version 1)"""
        content_type = upload.content_type or DEFAULT_MIME_TYPE
        object_key = generate_object_key(folder.path, file_name, 1)
        await self.storage.put_object(
            object_key,
            upload.file,
            size,
            content_type,
            metadata={"original-name": quote(file_name), "uploaded-by": str(user_id), "version": "1"}
        )

        try:
            document = await self.document_repo.create(Document(
                file_name=file_name,
                original_name=file_name,
                mime_type=content_type,
                file_extension=os.path.splitext(file_name)[1].lower() or None,
                file_size=size,
                checksum=checksum,
                object_key=object_key,
                folder_id=folder.id,
                bucket_name=self.storage.bucket_name,
                path=document_path(folder.path, file_name),
                description=description,
                tags=tags,
                uploaded_by=user_id,
            ))
            version = await self.document_repo.add_version(DocumentVersion(
                document_id=document.id,
                version=1,
                object_key=object_key,
                file_size=size,
                checksum=checksum,
                created_by=user_id,
            ))
        except SQLAlchemyError as e:
            await self._compensate(e, object_key)

        await self._commit_or_compensate(object_key)
        logger.info("Created document %s (%s, %d bytes)", document.id, document.path, size)
        return document, version

    async def add_version(
        self,
        document: Document,
        folder: Folder,
        upload: UploadFile,
        checksum: str,
        size: int,
        user_id: uuid.UUID
    ) -> DocumentVersion:
        """Store the next version and point the document at it"""
        next_version = await self.document_repo.max_version(document.id) + 1
        content_type = upload.content_type or document.mime_type or DEFAULT_MIME_TYPE
        object_key = generate_object_key(folder.path, document.file_name, next_version)
        await self.storage.put_object(
            object_key,
            upload.file,
            size,
            content_type,
            metadata={
                "original-name": quote(document.original_name),
                "uploaded-by": str(user_id),
                "version": str(next_version),
            }
        )

        document_id = document.id
        try:
            version = await self.document_repo.add_version(DocumentVersion(
                document_id=document_id,
                version=next_version,
                object_key=object_key,
                file_size=size,
                checksum=checksum,
                created_by=user_id,
            ))
            document.object_key = object_key
            document.file_size = size
            document.checksum = checksum
            document.mime_type = content_type
            document.path = document_path(folder.path, document.file_name)
            await self.db.flush()
        except SQLAlchemyError as e:
            await self._compensate(e, object_key)

        await self._commit_or_compensate(object_key)
        logger.info("Stored version %d of document %s", next_version, document_id)
        return version

    async def resolve_copy_name(self, original_name: str, folder_id: uuid.UUID) -> str:
        for attempt in range(settings.COPY_NAME_MAX_ATTEMPTS + 1):
            candidate = copy_name_candidate(original_name, attempt)
            if not await self.document_repo.name_exists(folder_id, candidate):
                return candidate
        return copy_name_fallback(original_name)

    async def copy_document(
        self,
        source: Document,
        target_folder: Folder,
        user_id: Optional[uuid.UUID] = None
    ) -> Tuple[Document, DocumentVersion]:
        """Physical copy of the latest content into target_folder as a new document at version 1"""
        name = await self.resolve_copy_name(source.original_name, target_folder.id)
        object_key = generate_object_key(target_folder.path, name, 1)
        await self.storage.copy_object(source.object_key, object_key)

        created_by = user_id or source.uploaded_by
        try:
            document = await self.document_repo.create(Document(
                file_name=name,
                original_name=name,
                mime_type=source.mime_type,
                file_extension=source.file_extension,
                file_size=source.file_size,
                checksum=source.checksum,
                object_key=object_key,
                folder_id=target_folder.id,
                bucket_name=self.storage.bucket_name,
                path=document_path(target_folder.path, name),
                description=source.description,
                tags=source.tags,
                uploaded_by=created_by,
            ))
            version = await self.document_repo.add_version(DocumentVersion(
                document_id=document.id,
                version=1,
                object_key=object_key,
                file_size=source.file_size,
                checksum=source.checksum,
                created_by=created_by,
            ))
        except SQLAlchemyError as e:
            await self._compensate(e, object_key)

        await self._commit_or_compensate(object_key)
        logger.info("Copied document %s to %s", source.id, document.path)
        return document, version

    async def purge_document(self, document: Document) -> List[str]:
        """
        Remove every stored version, then the metadata.

        Object removal is best effort; keys that could not be removed are
        returned (and queued for sweep) but never stop the metadata delete.
        """
        versions = await self.document_repo.list_versions(document.id)
        object_keys = list(dict.fromkeys([document.object_key] + [v.object_key for v in versions]))
        failed = await self.storage_sync.discard(object_keys, f"document {document.id} deleted")
        if failed:
            logger.warning("Could not remove %d object(s) of document %s", len(failed), document.id)

        try:
            await self.document_repo.delete(document)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to delete document metadata: %s", e)
            raise InternalError("Failed to delete document")
        return failed
