from typing import Optional, Set
import asyncio
import logging

import httpx

from docvault.core.config import settings
from docvault.schemas.notification import UserActionEvent, UserActionChange

logger = logging.getLogger(__name__)

USER_ACTION_ENDPOINT = "/api/notifications/email/user-action"


class NotificationClient:
    """Fire-and-forget client for the external notification service"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url if base_url is not None else settings.NOTIFICATION_SERVICE_URL) or None
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT_SECONDS
        self.transport = transport
        self._tasks: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def send_user_action(self, event: UserActionEvent) -> None:
        url = f"{self.base_url.rstrip('/')}{USER_ACTION_ENDPOINT}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(url, json=event.model_dump(mode="json"))
            response.raise_for_status()

    async def _send_quietly(self, event: UserActionEvent) -> None:
        try:
            await self.send_user_action(event)
            logger.debug("Sent %s notification for %s", event.action_type, event.resource_name)
        except httpx.HTTPError as e:
            logger.warning("Failed to send %s notification: %s", event.action_type, e)

    def dispatch(self, event: UserActionEvent) -> Optional[asyncio.Task]:
        """Schedule delivery on a detached task; never blocks the caller"""
        if not self.enabled:
            logger.debug("Notification service not configured, dropping %s event", event.action_type)
            return None
        task = asyncio.create_task(self._send_quietly(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight notifications (used on shutdown)"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def folder_deleted_event(folder, ip_address: Optional[str] = None) -> UserActionEvent:
    return UserActionEvent(
        user_id=folder.owner_id,
        user_role=folder.owner_type,
        ip_address=ip_address,
        action_type="Folder Deletion",
        resource_name=folder.name,
        priority="high",
        priority_text="High",
        description=(
            f"Folder '{folder.name}' deleted from path '{folder.path}' "
            f"(contained {folder.file_count} files, {folder.total_size / 1024:.2f} KB total)"
        ),
        changes=[
            UserActionChange(field="Folder Status", old_value="Active", new_value="Deleted"),
            UserActionChange(field="Folder Path", old_value=folder.path, new_value="N/A"),
            UserActionChange(field="File Count", old_value=f"{folder.file_count} files", new_value="0 files"),
            UserActionChange(field="Total Size", old_value=f"{folder.total_size} bytes", new_value="0 bytes"),
        ],
    )


def document_deleted_event(document, owner_id=None, ip_address: Optional[str] = None) -> UserActionEvent:
    return UserActionEvent(
        user_id=owner_id,
        ip_address=ip_address,
        action_type="Document Deletion",
        resource_name=document.original_name,
        description=f"Document '{document.original_name}' ({document.file_size / 1024:.2f} KB) deleted from folder",
        changes=[
            UserActionChange(field="Document Status", old_value="Active", new_value="Deleted"),
            UserActionChange(field="File Size", old_value=f"{document.file_size} bytes", new_value="0 bytes"),
        ],
    )


notification_client = NotificationClient()


async def get_notifier() -> NotificationClient:
    return notification_client
