from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class AuditEventCreate(BaseModel):
    entity_type: str
    entity_id: str
    action: str
    actor_user_id: Optional[str] = None
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    correlation_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    occurred_at: Optional[datetime] = None


class AuditEventRead(BaseModel):
    id: str
    org_id: str
    entity_type: str
    entity_id: str
    action: str
    actor_user_id: Optional[str] = None
    occurred_at: datetime
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    correlation_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(default=None, validation_alias="metadata_json")

    class Config:
        from_attributes = True
        populate_by_name = True
