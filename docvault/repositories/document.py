from typing import Dict, Iterable, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, delete, or_
import uuid

from docvault.models.document import Document, DocumentVersion
from docvault.models.folder import Folder


class DocumentRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, document: Document) -> Document:
        self.db.add(document)
        await self.db.flush()
        return document

    async def add_version(self, version: DocumentVersion) -> DocumentVersion:
        self.db.add(version)
        await self.db.flush()
        return version

    async def get_by_id(self, document_id: uuid.UUID) -> Optional[Document]:
        """Get document by ID"""
        result = await self.db.execute(select(Document).where(Document.id == document_id))
        return result.scalar_one_or_none()

    async def get_by_folder_and_name(self, folder_id: uuid.UUID, file_name: str) -> Optional[Document]:
        result = await self.db.execute(
            select(Document).where(Document.folder_id == folder_id, Document.file_name == file_name)
        )
        return result.scalar_one_or_none()

    async def name_exists(self, folder_id: uuid.UUID, name: str) -> bool:
        """A document in the folder already uses name as file or original name"""
        count = await self.db.scalar(
            select(func.count()).select_from(Document).where(
                Document.folder_id == folder_id,
                or_(Document.file_name == name, Document.original_name == name),
            )
        )
        return bool(count)

    async def list_by_folder(self, folder_id: uuid.UUID) -> List[Document]:
        result = await self.db.execute(
            select(Document).where(Document.folder_id == folder_id).order_by(Document.file_name)
        )
        return list(result.scalars().all())

    async def list_by_folders(self, folder_ids: Iterable[uuid.UUID]) -> List[Document]:
        folder_ids = list(folder_ids)
        if not folder_ids:
            return []
        result = await self.db.execute(
            select(Document).where(Document.folder_id.in_(folder_ids)).order_by(Document.path)
        )
        return list(result.scalars().all())

    async def count_in_folder(self, folder_id: uuid.UUID) -> int:
        return await self.db.scalar(
            select(func.count()).select_from(Document).where(Document.folder_id == folder_id)
        ) or 0

    async def list_in_subtree(self, path: str) -> List[Document]:
        """Documents whose folder path equals or descends from path"""
        result = await self.db.execute(
            select(Document)
            .join(Folder, Document.folder_id == Folder.id)
            .where(or_(
                Folder.path == path,
                Folder.path.startswith(path.rstrip("/") + "/", autoescape=True),
            ))
        )
        return list(result.scalars().all())

    async def max_version(self, document_id: uuid.UUID) -> int:
        return await self.db.scalar(
            select(func.coalesce(func.max(DocumentVersion.version), 0))
            .where(DocumentVersion.document_id == document_id)
        ) or 0

    async def list_versions(self, document_id: uuid.UUID) -> List[DocumentVersion]:
        """All versions, newest first"""
        result = await self.db.execute(
            select(DocumentVersion)
            .where(DocumentVersion.document_id == document_id)
            .order_by(DocumentVersion.version.desc())
        )
        return list(result.scalars().all())

    async def list_versions_for(self, document_ids: Iterable[uuid.UUID]) -> List[DocumentVersion]:
        document_ids = list(document_ids)
        if not document_ids:
            return []
        result = await self.db.execute(
            select(DocumentVersion).where(DocumentVersion.document_id.in_(document_ids))
        )
        return list(result.scalars().all())

    async def get_version(self, document_id: uuid.UUID, version: int) -> Optional[DocumentVersion]:
        result = await self.db.execute(
            select(DocumentVersion).where(
                DocumentVersion.document_id == document_id,
                DocumentVersion.version == version,
            )
        )
        return result.scalar_one_or_none()

    async def get_latest_version(self, document_id: uuid.UUID) -> Optional[DocumentVersion]:
        result = await self.db.execute(
            select(DocumentVersion)
            .where(DocumentVersion.document_id == document_id)
            .order_by(DocumentVersion.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def latest_version_numbers(self, document_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, int]:
        document_ids = list(document_ids)
        if not document_ids:
            return {}
        result = await self.db.execute(
            select(DocumentVersion.document_id, func.max(DocumentVersion.version))
            .where(DocumentVersion.document_id.in_(document_ids))
            .group_by(DocumentVersion.document_id)
        )
        return {document_id: version for document_id, version in result.all()}

    async def delete(self, document: Document) -> None:
        """Delete the document row and every version row"""
        await self.db.execute(
            delete(DocumentVersion).where(DocumentVersion.document_id == document.id)
        )
        await self.db.delete(document)
        await self.db.flush()
