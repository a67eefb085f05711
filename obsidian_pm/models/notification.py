"""
obsidian_pm/models/notification.py

Notification feed entries. Created once per logical event, never mutated by
the billing or deadline components afterwards.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class NotificationKind(str, Enum):
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"


class Notification(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    kind: NotificationKind
    title: str
    message: str
    link: Optional[str] = None
    is_read: bool = False
    created_at: datetime
