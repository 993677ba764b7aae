from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .models import ModuleStatus


class ModuleCreate(BaseModel):
    title: str
    description: Optional[str] = None
    content: Optional[str] = None
    competency_id: Optional[str] = None


class ModuleReview(BaseModel):
    notes: Optional[str] = None


class ModuleRead(BaseModel):
    id: str
    org_id: str
    title: str
    description: Optional[str] = None
    content: Optional[str] = None
    competency_id: Optional[str] = None
    status: ModuleStatus
    created_by: Optional[str] = None
    submitted_by: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
