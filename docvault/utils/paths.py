"""
Materialized path helpers.

Folder paths look like ``/Projects/2024/Reports``; the object storage prefix of a
folder is the same path without the leading slash, and document objects live
under that prefix with the version and a per-write token embedded in the
file name (``Projects/2024/Reports/summary-v3-1f0c9a2e.pdf``).
"""
import os
import posixpath
import time
import uuid
from typing import Optional

from docvault.utils.exceptions import ValidationError

FOLDER_MARKER = ".foldermarker"
MAX_NAME_LENGTH = 255
INVALID_NAME_PARTS = ["/", "\\", ":", "*", "?", "\"", "<", ">", "|", "..", "~"]
INVALID_FILE_NAME_CHARS = ["/", "\\", ":", "*", "?", "\"", "<", ">", "|", " "]


def validate_folder_name(name: str) -> str:
    """Return the stripped name or raise ValidationError"""
    if name is None or not name.strip():
        raise ValidationError("Folder name cannot be empty")
    name = name.strip()
    for part in INVALID_NAME_PARTS:
        if part in name:
            raise ValidationError(f"Folder name contains invalid character: {part}")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Folder name too long (max {MAX_NAME_LENGTH} characters)")
    return name


def validate_file_name(name: Optional[str]) -> str:
    if not name or not name.strip():
        raise ValidationError("File name is required")
    # Browsers may send a full client-side path
    name = posixpath.basename(name.replace("\\", "/")).strip()
    if not name or name in (".", ".."):
        raise ValidationError("Invalid file name")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"File name too long (max {MAX_NAME_LENGTH} characters)")
    return name


def path_segment(name: str) -> str:
    return name.replace(" ", "_")


def generate_folder_path(parent_path: Optional[str], name: str) -> str:
    segment = path_segment(name)
    if not parent_path or parent_path == "/":
        return f"/{segment}"
    return f"{parent_path.rstrip('/')}/{segment}"


def folder_prefix(folder_path: str) -> str:
    """Storage prefix of a folder (no leading or trailing slash)"""
    return folder_path.strip("/")


def document_path(folder_path: str, file_name: str) -> str:
    return f"{folder_path.rstrip('/')}/{file_name}"


def versioned_file_name(file_name: str, version: int, token: str) -> str:
    stem, ext = os.path.splitext(file_name)
    return f"{stem}-v{version}-{token}{ext}"


def generate_object_key(folder_path: str, file_name: str, version: int, token: Optional[str] = None) -> str:
    """
    Object key of one stored version.

    The random token gives every write its own key; a stored version object
    is never overwritten, even by a concurrent upload of the same version.
    """
    token = token or uuid.uuid4().hex[:8]
    return f"{folder_prefix(folder_path)}/{versioned_file_name(file_name, version, token)}"


def replace_path_prefix(value: str, old_prefix: str, new_prefix: str) -> str:
    """Swap old_prefix for new_prefix when value is old_prefix or lies under it"""
    if value == old_prefix:
        return new_prefix
    if value.startswith(old_prefix.rstrip("/") + "/"):
        return new_prefix.rstrip("/") + value[len(old_prefix.rstrip("/")):]
    return value


def archive_entry_path(document_folder_path: str, root_folder_path: str, file_name: str) -> str:
    """Path of a document inside a ZIP of root_folder_path"""
    relative = document_folder_path
    if relative.startswith(root_folder_path):
        relative = relative[len(root_folder_path):]
    relative = relative.strip("/")
    if relative:
        return posixpath.join(relative, file_name)
    return file_name


def sanitize_file_name(name: str, fallback: str = "folder") -> str:
    sanitized = name
    for char in INVALID_FILE_NAME_CHARS:
        sanitized = sanitized.replace(char, "_")
    while "__" in sanitized:
        sanitized = sanitized.replace("__", "_")
    sanitized = sanitized.strip("_")
    return sanitized or fallback


def copy_name_candidate(original_name: str, attempt: int) -> str:
    """attempt 0 is "Copy of <name>", then "Copy of <name>_1", "_2", ..."""
    base = f"Copy of {original_name}"
    if attempt == 0:
        return base
    return f"{base}_{attempt}"


def copy_name_fallback(original_name: str) -> str:
    return f"Copy of {original_name}_{int(time.time())}"
