from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_, update
import uuid

from docvault.models.folder import Folder
from docvault.models.document import Document
from docvault.schemas.folder import FolderListParams


class FolderRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        name: str,
        path: str,
        owner_id: uuid.UUID,
        owner_type: str,
        parent_id: Optional[uuid.UUID] = None
    ) -> Folder:
        """Create a new folder record (flushed, not committed)"""
        folder = Folder(
            name=name,
            path=path,
            parent_id=parent_id,
            owner_id=owner_id,
            owner_type=owner_type,
            file_count=0,
            total_size=0
        )
        self.db.add(folder)
        await self.db.flush()
        return folder

    async def get_by_id(self, folder_id: uuid.UUID) -> Optional[Folder]:
        """Get folder by ID"""
        result = await self.db.execute(select(Folder).where(Folder.id == folder_id))
        return result.scalar_one_or_none()

    async def get_by_path(self, path: str) -> Optional[Folder]:
        result = await self.db.execute(select(Folder).where(Folder.path == path))
        return result.scalar_one_or_none()

    async def find_sibling(
        self,
        owner_id: uuid.UUID,
        owner_type: str,
        parent_id: Optional[uuid.UUID],
        name: str,
        exclude_id: Optional[uuid.UUID] = None
    ) -> Optional[Folder]:
        """Folder with the same name under the same parent and owner"""
        query = select(Folder).where(
            Folder.owner_id == owner_id,
            Folder.owner_type == owner_type,
            Folder.name == name,
        )
        if parent_id is None:
            query = query.where(Folder.parent_id.is_(None))
        else:
            query = query.where(Folder.parent_id == parent_id)
        if exclude_id is not None:
            query = query.where(Folder.id != exclude_id)
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def list(self, params: FolderListParams) -> Tuple[List[Folder], int]:
        """Filtered, searched, sorted and paginated folders plus the total count"""
        query = select(Folder)
        if params.owner_id is not None:
            query = query.where(Folder.owner_id == params.owner_id)
        if params.owner_type is not None:
            query = query.where(Folder.owner_type == params.owner_type.value)
        if params.parent_id is not None:
            query = query.where(Folder.parent_id == params.parent_id)
        if params.search:
            term = f"%{params.search.strip()}%"
            query = query.where(or_(Folder.name.ilike(term), Folder.path.ilike(term)))

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))

        sort_column = getattr(Folder, params.sort_field.value)
        sort_column = sort_column.asc() if params.sort_order == "asc" else sort_column.desc()
        query = (
            query.order_by(sort_column, Folder.id)
            .offset((params.page - 1) * params.limit)
            .limit(params.limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def get_children(self, parent_id: uuid.UUID) -> List[Folder]:
        result = await self.db.execute(
            select(Folder).where(Folder.parent_id == parent_id).order_by(Folder.name)
        )
        return list(result.scalars().all())

    async def count_children(self, parent_id: uuid.UUID) -> int:
        return await self.db.scalar(
            select(func.count()).select_from(Folder).where(Folder.parent_id == parent_id)
        ) or 0

    async def get_descendants_by_path(self, path: str) -> List[Folder]:
        """All folders strictly below path, shallowest first"""
        result = await self.db.execute(
            select(Folder)
            .where(Folder.path.startswith(path.rstrip("/") + "/", autoescape=True))
            .order_by(func.length(Folder.path))
        )
        return list(result.scalars().all())

    async def get_descendants_by_parent(self, folder_id: uuid.UUID) -> List[Folder]:
        """All folders below folder_id following parent_id links (depth-first worklist)"""
        descendants: List[Folder] = []
        visited = {folder_id}
        stack = [folder_id]
        while stack:
            current = stack.pop()
            children = await self.get_children(current)
            for child in reversed(children):
                if child.id in visited:
                    continue
                visited.add(child.id)
                descendants.append(child)
                stack.append(child.id)
        return descendants

    async def get_ancestors(self, folder: Folder) -> List[Folder]:
        """Parent chain of a folder, nearest first"""
        ancestors: List[Folder] = []
        visited = {folder.id}
        parent_id = folder.parent_id
        while parent_id is not None and parent_id not in visited:
            visited.add(parent_id)
            parent = await self.get_by_id(parent_id)
            if parent is None:
                break
            ancestors.append(parent)
            parent_id = parent.parent_id
        return ancestors

    async def is_ancestor_of(self, ancestor_id: uuid.UUID, folder_id: uuid.UUID) -> bool:
        """True when ancestor_id appears on folder_id's parent chain (or is folder_id)"""
        visited = set()
        current_id: Optional[uuid.UUID] = folder_id
        while current_id is not None and current_id not in visited:
            if current_id == ancestor_id:
                return True
            visited.add(current_id)
            current_id = await self.db.scalar(select(Folder.parent_id).where(Folder.id == current_id))
        return False

    async def get_root_id(self, folder: Folder) -> uuid.UUID:
        ancestors = await self.get_ancestors(folder)
        return ancestors[-1].id if ancestors else folder.id

    async def compute_subtree_stats(self, path: str) -> Tuple[int, int]:
        """(document count, total size) of every document at or below path"""
        query = (
            select(func.count(Document.id), func.coalesce(func.sum(Document.file_size), 0))
            .select_from(Document)
            .join(Folder, Document.folder_id == Folder.id)
            .where(or_(
                Folder.path == path,
                Folder.path.startswith(path.rstrip("/") + "/", autoescape=True),
            ))
        )
        file_count, total_size = (await self.db.execute(query)).one()
        return int(file_count or 0), int(total_size or 0)

    async def set_stats(self, folder_id: uuid.UUID, file_count: int, total_size: int) -> None:
        await self.db.execute(
            update(Folder)
            .where(Folder.id == folder_id)
            .values(file_count=file_count, total_size=total_size)
            .execution_options(synchronize_session="fetch")
        )

    async def delete(self, folder: Folder) -> None:
        await self.db.delete(folder)
        await self.db.flush()
