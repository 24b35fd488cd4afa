from sqlalchemy import Column, String, ForeignKey, DateTime, BigInteger, Integer, Uuid, UniqueConstraint, Index
from datetime import datetime, timezone
import uuid

from docvault.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Folder(Base):
    __tablename__ = "folders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    name = Column(String(255), nullable=False)

    # Materialized path: parent.path + "/" + name
    path = Column(String, unique=True, nullable=False, index=True)
    parent_id = Column(Uuid, ForeignKey("folders.id"), nullable=True, index=True)

    # Owner context, must match across parent/child
    owner_id = Column(Uuid, nullable=False)
    owner_type = Column(String(32), nullable=False)  # user, organization

    # Stats (recomputed over the whole subtree)
    file_count = Column(Integer, nullable=False, default=0)
    total_size = Column(BigInteger, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("owner_id", "owner_type", "parent_id", "name", name="uq_folder_sibling_name"),
        Index("ix_folders_owner", "owner_id", "owner_type"),
    )

    def __repr__(self) -> str:
        return f"<Folder {self.path}>"
