from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from skillsdb.apps.competencies.schemas import FailedItemRead, SkippedItemRead
from skillsdb.apps.development.schemas import DevelopmentActivityRead

from .models import AssessmentStatus


class AssessRequest(BaseModel):
    criteria_results: Dict[int, Optional[bool]] = Field(default_factory=dict)
    notes: Optional[str] = None


class AssessmentItem(AssessRequest):
    user_competency_id: str


class BatchAssessRequest(BaseModel):
    items: List[AssessmentItem]


class AssessmentRead(BaseModel):
    id: str
    org_id: str
    user_id: str
    competency_id: str
    user_competency_id: Optional[str] = None
    assessed_by: Optional[str] = None
    assessment_date: datetime
    level_achieved: int
    criteria_results: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    status: AssessmentStatus

    class Config:
        from_attributes = True


class AssessmentBatchRead(BaseModel):
    succeeded: List[AssessmentRead] = Field(default_factory=list)
    skipped: List[SkippedItemRead] = Field(default_factory=list)
    failed: List[FailedItemRead] = Field(default_factory=list)
    summary: Dict[str, int] = Field(default_factory=dict)


class ValidationRequest(BaseModel):
    achieved_level: int
    notes: Optional[str] = None


class ValidationRecordRead(DevelopmentActivityRead):
    pass
