from typing import List, Optional
from fastapi import APIRouter, Depends, File as FastAPIFile, Form, Query, Request, Response, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from docvault.core.database import get_db
from docvault.core.minio import MinioClient, get_minio
from docvault.core.redis import RedisClient, get_redis
from docvault.api.deps import get_client_ip, get_current_user_id, get_optional_user_id
from docvault.schemas.common import Envelope
from docvault.schemas.document import Document, DocumentCopy, DocumentMove, DocumentUpdate, DocumentVersion
from docvault.services.document import DocumentService
from docvault.services.notifications import NotificationClient, get_notifier
from docvault.utils.files import content_disposition

router = APIRouter()


@router.post("", response_model=Envelope[Document], status_code=status.HTTP_201_CREATED)
async def upload_document(
    response: Response,
    folder_id: uuid.UUID = Form(...),
    file: UploadFile = FastAPIFile(...),
    description: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio),
    redis_client: RedisClient = Depends(get_redis)
):
    """Upload a file; uploading an existing file name again stores a new version"""
    document_service = DocumentService(db, storage, redis_client)
    document, created = await document_service.upload_document(folder_id, file, user_id, description, tags)
    if not created:
        response.status_code = status.HTTP_200_OK
        return Envelope[Document](message=f"New version {document.version} uploaded successfully", data=document)
    return Envelope[Document](message="Document uploaded successfully", data=document)


@router.get("", response_model=Envelope[List[Document]])
async def list_documents(
    folder_id: uuid.UUID = Query(...),
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio)
):
    """List the documents directly inside a folder"""
    document_service = DocumentService(db, storage)
    documents = await document_service.list_documents(folder_id)
    return Envelope[List[Document]](message="Documents retrieved successfully", data=documents)


@router.get("/{document_id}", response_model=Envelope[Document])
async def get_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio)
):
    document_service = DocumentService(db, storage)
    document = await document_service.get_document(document_id)
    return Envelope[Document](message="Document retrieved successfully", data=document)


@router.put("/{document_id}", response_model=Envelope[Document])
async def update_document(
    document_id: uuid.UUID,
    document_update: DocumentUpdate,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio)
):
    """Update document description and tags"""
    document_service = DocumentService(db, storage)
    document = await document_service.update_document(document_id, document_update)
    return Envelope[Document](message="Document updated successfully", data=document)


@router.delete("/{document_id}", response_model=Envelope[Document])
async def delete_document(
    document_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio),
    redis_client: RedisClient = Depends(get_redis),
    notifier: NotificationClient = Depends(get_notifier)
):
    """Delete a document with every stored version"""
    document_service = DocumentService(db, storage, redis_client, notifier)
    document = await document_service.delete_document(document_id, get_client_ip(request))
    return Envelope[Document](message="Document deleted successfully", data=document)


@router.get("/{document_id}/download")
async def download_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio)
):
    """Download the latest version"""
    document_service = DocumentService(db, storage)
    document, stream = await document_service.open_download(document_id)
    return StreamingResponse(
        stream.iter_chunks(),
        media_type=document.mime_type,
        headers={
            "Content-Disposition": content_disposition(document.original_name),
            "Content-Length": str(document.file_size),
        }
    )


@router.post("/{document_id}/move", response_model=Envelope[Document])
async def move_document(
    document_id: uuid.UUID,
    document_move: DocumentMove,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio),
    redis_client: RedisClient = Depends(get_redis)
):
    document_service = DocumentService(db, storage, redis_client)
    document, _ = await document_service.move_document(document_id, document_move.target_folder_id)
    return Envelope[Document](message="Document moved successfully", data=document)


@router.post("/{document_id}/copy", response_model=Envelope[Document], status_code=status.HTTP_201_CREATED)
async def copy_document(
    document_id: uuid.UUID,
    document_copy: DocumentCopy,
    user_id: Optional[uuid.UUID] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio),
    redis_client: RedisClient = Depends(get_redis)
):
    """Copy the latest version into a folder as a new document"""
    document_service = DocumentService(db, storage, redis_client)
    document = await document_service.copy_document(document_id, document_copy.target_folder_id, user_id)
    return Envelope[Document](message="Document copied successfully", data=document)


@router.get("/{document_id}/versions", response_model=Envelope[List[DocumentVersion]])
async def list_document_versions(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio)
):
    """Version history, newest first"""
    document_service = DocumentService(db, storage)
    versions = await document_service.list_versions(document_id)
    return Envelope[List[DocumentVersion]](message="Document versions retrieved successfully", data=versions)


@router.get("/{document_id}/versions/latest", response_model=Envelope[DocumentVersion])
async def get_latest_document_version(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio)
):
    document_service = DocumentService(db, storage)
    version = await document_service.get_latest_version(document_id)
    return Envelope[DocumentVersion](message="Latest version retrieved successfully", data=version)


@router.post("/{document_id}/versions", response_model=Envelope[Document], status_code=status.HTTP_201_CREATED)
async def upload_document_version(
    document_id: uuid.UUID,
    file: UploadFile = FastAPIFile(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio),
    redis_client: RedisClient = Depends(get_redis)
):
    """Upload new content for an existing document"""
    document_service = DocumentService(db, storage, redis_client)
    document = await document_service.upload_version(document_id, file, user_id)
    return Envelope[Document](message=f"Version {document.version} uploaded successfully", data=document)


@router.get("/{document_id}/versions/{version}/download")
async def download_document_version(
    document_id: uuid.UUID,
    version: int,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio)
):
    document_service = DocumentService(db, storage)
    document, document_version, stream = await document_service.open_version_download(document_id, version)
    return StreamingResponse(
        stream.iter_chunks(),
        media_type=document.mime_type,
        headers={
            "Content-Disposition": content_disposition(document.original_name),
            "Content-Length": str(document_version.file_size),
        }
    )
