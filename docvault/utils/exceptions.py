from typing import Any, Optional


class DocVaultException(Exception):
    """Base exception for the application"""
    status_code = 500
    error = "Internal error"

    def __init__(self, message: str, data: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.data = data


class ValidationError(DocVaultException):
    """Validation related errors"""
    status_code = 400
    error = "Validation error"


class EmptyFolderError(ValidationError):
    """Folder has no documents to archive"""
    error = "Empty folder"


class NotFoundError(DocVaultException):
    """Resource not found errors"""
    status_code = 404
    error = "Not found"


class ConflictError(DocVaultException):
    """Resource conflict errors"""
    status_code = 409
    error = "Conflict"


class StorageUnavailableError(DocVaultException):
    """Object storage is unreachable or rejected the request"""
    status_code = 503
    error = "Storage service unavailable"


class StorageRelocationError(DocVaultException):
    """Metadata committed but objects could not be relocated"""
    status_code = 502
    error = "Storage relocation failed"


class InternalError(DocVaultException):
    """Metadata transaction failures"""
    status_code = 500
    error = "Internal error"
