import hashlib
from urllib.parse import quote
from typing import BinaryIO, Tuple

from fastapi import UploadFile

from docvault.core.config import settings
from docvault.utils.exceptions import ValidationError

CHECKSUM_CHUNK_SIZE = 1024 * 1024


def calculate_checksum(data: BinaryIO) -> Tuple[str, int]:
    """MD5 hex digest and byte size of a seekable stream; rewinds it afterwards"""
    digest = hashlib.md5()
    size = 0
    data.seek(0)
    while True:
        chunk = data.read(CHECKSUM_CHUNK_SIZE)
        if not chunk:
            break
        digest.update(chunk)
        size += len(chunk)
    data.seek(0)
    return digest.hexdigest(), size


def measure_upload(upload: UploadFile) -> Tuple[str, int]:
    """Validate an upload's size and return (checksum, size)"""
    checksum, size = calculate_checksum(upload.file)
    if size == 0:
        raise ValidationError("File is empty")
    if size > settings.MAX_FILE_SIZE_BYTES:
        raise ValidationError(f"File size exceeds {settings.MAX_FILE_SIZE_MB}MB limit")
    return checksum, size


def content_disposition(file_name: str) -> str:
    """attachment header value that survives non-ASCII file names"""
    fallback = file_name.encode("ascii", "replace").decode("ascii").replace("?", "_").replace('"', "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(file_name)}"
