from typing import List, Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone
import uuid


class UserActionChange(BaseModel):
    field: str
    old_value: str
    new_value: str


class UserActionEvent(BaseModel):
    """Payload of the notification service user-action email endpoint"""
    admin_name: str = "System Admin"
    user_id: Optional[uuid.UUID] = None
    user_role: str = ""
    ip_address: Optional[str] = None
    action_type: str
    resource_name: str
    status: str = "Completed"
    priority: str = "medium"
    priority_text: str = "Medium"
    description: Optional[str] = None
    changes: List[UserActionChange] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
