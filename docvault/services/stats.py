from typing import Iterable, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import logging
import uuid

from docvault.repositories.folder import FolderRepository
from docvault.models.folder import Folder
from docvault.utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class StatsAggregator:
    """Recomputes file_count/total_size from the documents of a whole subtree"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.folder_repo = FolderRepository(db)

    async def recompute_folder(self, folder: Folder) -> Tuple[int, int]:
        file_count, total_size = await self.folder_repo.compute_subtree_stats(folder.path)
        await self.folder_repo.set_stats(folder.id, file_count, total_size)
        return file_count, total_size

    async def recompute(self, folder_id: uuid.UUID) -> Folder:
        """Recompute a folder and each ancestor, raising on failure"""
        folder = await self.folder_repo.get_by_id(folder_id)
        if not folder:
            raise NotFoundError("Folder not found")

        chain = [folder] + await self.folder_repo.get_ancestors(folder)
        for current in chain:
            await self.recompute_folder(current)
        await self.db.commit()
        await self.db.refresh(folder)
        return folder

    async def refresh(self, folder_ids: Iterable[Optional[uuid.UUID]]) -> bool:
        """
        Best-effort recompute after a mutation.

        Runs in its own transaction; failures are logged and never propagate,
        the primary operation has already been committed.
        """
        targets = [folder_id for folder_id in dict.fromkeys(folder_ids) if folder_id is not None]
        if not targets:
            return True

        try:
            seen = set()
            for folder_id in targets:
                folder = await self.folder_repo.get_by_id(folder_id)
                if not folder:
                    continue
                chain = [folder] + await self.folder_repo.get_ancestors(folder)
                for current in chain:
                    if current.id in seen:
                        continue
                    seen.add(current.id)
                    await self.recompute_folder(current)
            await self.db.commit()
            return True
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning("Failed to update folder stats for %s: %s", targets, e)
            return False
