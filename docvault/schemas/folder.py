from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum
import uuid

from docvault.schemas.document import Document


class OwnerType(str, Enum):
    USER = "user"
    ORGANIZATION = "organization"


class FolderCreate(BaseModel):
    name: str
    parent_id: Optional[uuid.UUID] = None
    owner_id: uuid.UUID
    owner_type: OwnerType


class FolderUpdate(BaseModel):
    name: str


class FolderMove(BaseModel):
    target_parent_id: Optional[uuid.UUID] = None


class Folder(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    path: str
    parent_id: Optional[uuid.UUID] = None
    owner_id: uuid.UUID
    owner_type: str
    file_count: int
    total_size: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FolderContents(BaseModel):
    folder: Folder
    subfolders: List[Folder]
    documents: List[Document]


class FolderStructureResult(BaseModel):
    """Folder after a rename/move plus the state of the storage relocation"""
    folder: Folder
    storage_status: Literal["complete", "pending"] = "complete"
    objects_moved: int = 0


class FolderSortField(str, Enum):
    NAME = "name"
    PATH = "path"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    FILE_COUNT = "file_count"
    TOTAL_SIZE = "total_size"


class FolderListParams(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    search: Optional[str] = None
    owner_id: Optional[uuid.UUID] = None
    owner_type: Optional[OwnerType] = None
    parent_id: Optional[uuid.UUID] = None
    sort_field: FolderSortField = FolderSortField.CREATED_AT
    sort_order: Literal["asc", "desc"] = "desc"
