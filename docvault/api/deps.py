from typing import Optional
from fastapi import Header, Request
import uuid

from docvault.utils.exceptions import ValidationError


async def get_current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-ID")) -> uuid.UUID:
    """Caller identity forwarded by the gateway"""
    if not x_user_id:
        raise ValidationError("X-User-ID header is required")
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise ValidationError("X-User-ID header must be a valid UUID")


async def get_optional_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-ID")) -> Optional[uuid.UUID]:
    if not x_user_id:
        return None
    return await get_current_user_id(x_user_id)


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
