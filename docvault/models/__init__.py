from docvault.models.folder import Folder
from docvault.models.document import Document, DocumentVersion

__all__ = ["Folder", "Document", "DocumentVersion"]
