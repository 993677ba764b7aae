from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from .models import NotificationType


class NotificationRead(BaseModel):
    id: str
    org_id: str
    user_id: str
    type: NotificationType
    title: str
    body: Optional[str] = None
    payload: Optional[dict[str, Any]] = None
    link_path: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    read_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MarkAllReadResult(BaseModel):
    updated: int
