from typing import Optional
from pydantic import BaseModel, ConfigDict
from datetime import datetime
import uuid


class DocumentUpdate(BaseModel):
    description: Optional[str] = None
    tags: Optional[str] = None


class DocumentMove(BaseModel):
    target_folder_id: uuid.UUID


class DocumentCopy(BaseModel):
    target_folder_id: uuid.UUID


class Document(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    file_name: str
    original_name: str
    path: str
    file_size: int
    mime_type: str
    file_extension: Optional[str] = None
    checksum: str
    folder_id: uuid.UUID
    object_key: str
    uploaded_by: uuid.UUID
    version: int = 1
    description: Optional[str] = None
    tags: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DocumentVersion(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    document_id: uuid.UUID
    version: int
    object_key: str
    file_size: int
    checksum: str
    created_by: uuid.UUID
    created_at: Optional[datetime] = None
