from typing import List, Literal, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from docvault.core.database import get_db
from docvault.core.minio import MinioClient, get_minio
from docvault.core.redis import RedisClient, get_redis
from docvault.api.deps import get_client_ip
from docvault.schemas.common import Envelope, PaginatedEnvelope
from docvault.schemas.folder import (
    Folder,
    FolderContents,
    FolderCreate,
    FolderListParams,
    FolderMove,
    FolderSortField,
    FolderStructureResult,
    FolderUpdate,
    OwnerType,
)
from docvault.services.archive import ArchiveBuilder
from docvault.services.folder import FolderService
from docvault.services.notifications import NotificationClient, get_notifier
from docvault.utils.files import content_disposition

router = APIRouter()


@router.get("", response_model=PaginatedEnvelope[List[Folder]])
async def list_folders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    owner_id: Optional[uuid.UUID] = None,
    owner_type: Optional[OwnerType] = None,
    parent_id: Optional[uuid.UUID] = None,
    sort_field: FolderSortField = FolderSortField.CREATED_AT,
    sort_order: Literal["asc", "desc"] = "desc",
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio)
):
    """List folders with filters, search, sorting and pagination"""
    params = FolderListParams(
        page=page,
        limit=limit,
        search=search,
        owner_id=owner_id,
        owner_type=owner_type,
        parent_id=parent_id,
        sort_field=sort_field,
        sort_order=sort_order,
    )
    folder_service = FolderService(db, storage)
    folders, pagination = await folder_service.list_folders(params)
    return PaginatedEnvelope[List[Folder]](
        message="Folders retrieved successfully",
        data=folders,
        pagination=pagination,
    )


@router.post("", response_model=Envelope[Folder], status_code=status.HTTP_201_CREATED)
async def create_folder(
    folder_in: FolderCreate,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio)
):
    """Create a folder (root level when parent_id is omitted)"""
    folder_service = FolderService(db, storage)
    folder = await folder_service.create_folder(folder_in)
    return Envelope[Folder](message="Folder created successfully", data=folder)


@router.get("/{folder_id}", response_model=Envelope[Folder])
async def get_folder(
    folder_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio)
):
    folder_service = FolderService(db, storage)
    folder = await folder_service.get_folder(folder_id)
    return Envelope[Folder](message="Folder retrieved successfully", data=folder)


@router.get("/{folder_id}/contents", response_model=Envelope[FolderContents])
async def get_folder_contents(
    folder_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio)
):
    """Direct subfolders and documents of a folder"""
    folder_service = FolderService(db, storage)
    contents = await folder_service.get_contents(folder_id)
    return Envelope[FolderContents](message="Folder contents retrieved successfully", data=contents)


@router.put("/{folder_id}", response_model=Envelope[FolderStructureResult])
async def rename_folder(
    folder_id: uuid.UUID,
    folder_update: FolderUpdate,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio),
    redis_client: RedisClient = Depends(get_redis)
):
    """Rename a folder; descendant paths and object keys follow"""
    folder_service = FolderService(db, storage, redis_client)
    result = await folder_service.rename_folder(folder_id, folder_update.name)
    return Envelope[FolderStructureResult](message="Folder renamed successfully", data=result)


@router.post("/{folder_id}/move", response_model=Envelope[FolderStructureResult])
async def move_folder(
    folder_id: uuid.UUID,
    folder_move: FolderMove,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio),
    redis_client: RedisClient = Depends(get_redis)
):
    """Move a folder under another parent (or to the root when target_parent_id is null)"""
    folder_service = FolderService(db, storage, redis_client)
    result = await folder_service.move_folder(folder_id, folder_move.target_parent_id)
    return Envelope[FolderStructureResult](message="Folder moved successfully", data=result)


@router.delete("/{folder_id}", response_model=Envelope[Folder])
async def delete_folder(
    folder_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio),
    redis_client: RedisClient = Depends(get_redis),
    notifier: NotificationClient = Depends(get_notifier)
):
    """Delete an empty folder"""
    folder_service = FolderService(db, storage, redis_client, notifier)
    folder = await folder_service.delete_folder(folder_id, get_client_ip(request))
    return Envelope[Folder](message="Folder deleted successfully", data=folder)


@router.get("/{folder_id}/download")
async def download_folder(
    folder_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio)
):
    """Download the whole folder subtree as a streamed ZIP archive"""
    archive_builder = ArchiveBuilder(db, storage)
    archive = await archive_builder.prepare(folder_id)
    return StreamingResponse(
        archive_builder.stream(archive),
        media_type="application/zip",
        headers={"Content-Disposition": content_disposition(archive.file_name)}
    )


@router.post("/{folder_id}/stats", response_model=Envelope[Folder])
async def recompute_folder_stats(
    folder_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio)
):
    """Recompute file_count/total_size for the folder and its ancestors"""
    folder_service = FolderService(db, storage)
    folder = await folder_service.recompute_stats(folder_id)
    return Envelope[Folder](message="Folder stats updated successfully", data=folder)
