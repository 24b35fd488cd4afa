from typing import Dict, List, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from docvault.repositories.folder import FolderRepository
from docvault.repositories.document import DocumentRepository
from docvault.models.folder import Folder
from docvault.utils.paths import FOLDER_MARKER, folder_prefix, replace_path_prefix

logger = logging.getLogger(__name__)


class PathPropagator:
    """
    Rewrites the materialized paths of a folder subtree.

    Only metadata is touched (flushed, not committed). The returned
    (old_key, new_key) pairs describe the object relocation that has to follow
    the commit: every version object of every document below the folder plus
    the folder markers.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.folder_repo = FolderRepository(db)
        self.document_repo = DocumentRepository(db)

    async def rewrite(self, folder: Folder, new_path: str) -> List[Tuple[str, str]]:
        old_path = folder.path
        if old_path == new_path:
            return []
        old_prefix = folder_prefix(old_path)
        new_prefix = folder_prefix(new_path)

        # Load the whole subtree before any path changes
        descendants = await self.folder_repo.get_descendants_by_path(old_path)
        documents = await self.document_repo.list_in_subtree(old_path)
        versions = await self.document_repo.list_versions_for(doc.id for doc in documents)

        moves: Dict[str, str] = {}

        for current in [folder] + descendants:
            current_old_prefix = folder_prefix(current.path)
            current.path = replace_path_prefix(current.path, old_path, new_path)
            moves[f"{current_old_prefix}/{FOLDER_MARKER}"] = f"{folder_prefix(current.path)}/{FOLDER_MARKER}"

        for version in versions:
            new_key = replace_path_prefix(version.object_key, old_prefix, new_prefix)
            if new_key != version.object_key:
                moves[version.object_key] = new_key
                version.object_key = new_key

        for document in documents:
            document.path = replace_path_prefix(document.path, old_path, new_path)
            new_key = replace_path_prefix(document.object_key, old_prefix, new_prefix)
            if new_key != document.object_key:
                moves.setdefault(document.object_key, new_key)
                document.object_key = new_key

        await self.db.flush()
        logger.debug(
            "Rewrote %s -> %s (%d folders, %d documents, %d objects)",
            old_path, new_path, len(descendants) + 1, len(documents), len(moves)
        )
        return list(moves.items())
