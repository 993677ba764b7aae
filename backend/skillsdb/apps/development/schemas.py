from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from .models import ActivityStatus, ActivityType, AuthorRole, FeedbackType


class DevelopmentActivityRead(BaseModel):
    id: str
    org_id: str
    activity_type: ActivityType
    trainee_id: str
    coach_id: Optional[str] = None
    assigned_by: Optional[str] = None
    competency_id: str
    target_level: int
    status: ActivityStatus
    title: str
    description: Optional[str] = None
    objectives: Optional[str] = None
    success_criteria: Optional[str] = None
    due_date: Optional[date] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    validated_at: Optional[datetime] = None
    validated_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class MarkReadyRequest(BaseModel):
    note: Optional[str] = None


class ValidateActivityRequest(BaseModel):
    achieved_level: Optional[int] = Field(default=None, ge=1, le=5)
    notes: Optional[str] = None


class CancelActivityRequest(BaseModel):
    reason: Optional[str] = None


class FeedbackCreate(BaseModel):
    content: str
    feedback_type: FeedbackType = FeedbackType.PROGRESS


class FeedbackRead(BaseModel):
    id: str
    activity_id: str
    author_id: Optional[str] = None
    author_role: AuthorRole
    feedback_type: FeedbackType
    content: str
    created_at: datetime

    class Config:
        from_attributes = True
