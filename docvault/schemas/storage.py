from typing import List, Literal, Optional
from pydantic import BaseModel, Field
import uuid


class ObjectMove(BaseModel):
    source_key: str
    target_key: str
    error: Optional[str] = None


class RelocationReport(BaseModel):
    """Outcome of moving objects after a metadata commit"""
    moved: List[ObjectMove] = Field(default_factory=list)
    failed: List[ObjectMove] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def storage_status(self) -> Literal["complete", "pending"]:
        return "complete" if self.ok else "pending"


class ReconcileRequest(BaseModel):
    limit: int = Field(100, ge=1, le=10000)


class ReconcileResult(BaseModel):
    relocations_retried: int = 0
    relocations_completed: int = 0
    relocations_requeued: int = 0
    relocations_lost: int = 0
    deletions_retried: int = 0
    deletions_completed: int = 0
    deletions_requeued: int = 0


class MissingObject(BaseModel):
    document_id: uuid.UUID
    version: int
    object_key: str


class IntegrityReport(BaseModel):
    folder_id: uuid.UUID
    folders_checked: int
    objects_checked: int
    missing: List[MissingObject] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing
