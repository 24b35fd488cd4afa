from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from docvault.core.database import get_db
from docvault.core.minio import MinioClient, get_minio
from docvault.core.redis import RedisClient, get_redis
from docvault.schemas.common import Envelope
from docvault.schemas.storage import IntegrityReport, ReconcileRequest, ReconcileResult
from docvault.services.reconcile import StorageReconciler

router = APIRouter()


@router.post("/reconcile", response_model=Envelope[ReconcileResult])
async def reconcile_storage(
    reconcile_in: Optional[ReconcileRequest] = None,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio),
    redis_client: RedisClient = Depends(get_redis)
):
    """Retry queued object relocations and deletions"""
    limit = reconcile_in.limit if reconcile_in else ReconcileRequest().limit
    reconciler = StorageReconciler(db, storage, redis_client)
    result = await reconciler.reconcile(limit)
    return Envelope[ReconcileResult](message="Storage reconciliation finished", data=result)


@router.get("/folders/{folder_id}/integrity", response_model=Envelope[IntegrityReport])
async def check_folder_integrity(
    folder_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: MinioClient = Depends(get_minio),
    redis_client: RedisClient = Depends(get_redis)
):
    """Report version objects below a folder that are missing from storage"""
    reconciler = StorageReconciler(db, storage, redis_client)
    report = await reconciler.verify_folder(folder_id)
    message = "All objects present" if report.ok else f"{len(report.missing)} object(s) missing"
    return Envelope[IntegrityReport](message=message, data=report)
