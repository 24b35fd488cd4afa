from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, BigInteger, Text, Uuid, UniqueConstraint
import uuid

from docvault.core.database import Base
from docvault.models.folder import utcnow


class Document(Base):
    __tablename__ = "documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    file_name = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    mime_type = Column(String, nullable=False, default="application/octet-stream")
    file_extension = Column(String, nullable=True)

    # Denormalized from the latest DocumentVersion
    file_size = Column(BigInteger, nullable=False)
    checksum = Column(String(64), nullable=False)
    object_key = Column(String, unique=True, nullable=False, index=True)

    # Placement
    folder_id = Column(Uuid, ForeignKey("folders.id"), nullable=False, index=True)
    bucket_name = Column(String, nullable=False)
    path = Column(String, nullable=False, index=True)

    # Optional metadata
    description = Column(Text, nullable=True)
    tags = Column(Text, nullable=True)

    uploaded_by = Column(Uuid, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("folder_id", "file_name", name="uq_document_folder_file_name"),
    )


class DocumentVersion(Base):
    __tablename__ = "document_versions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    document_id = Column(Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    version = Column(Integer, nullable=False)

    # Never overwritten, only superseded by a newer version
    object_key = Column(String, nullable=False)
    file_size = Column(BigInteger, nullable=False)
    checksum = Column(String(64), nullable=False)

    created_by = Column(Uuid, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("document_id", "version", name="uq_document_version"),
    )
