from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import ExpertRole, NominationStatus


class NominationEligibility(BaseModel):
    user_id: str
    competency_id: str
    eligible: bool
    reasons: List[str] = Field(default_factory=list)
    current_level: int
    suggested_role: Optional[ExpertRole] = None
    network_id: Optional[str] = None


class NominationCreate(BaseModel):
    user_id: str
    competency_id: str
    proposed_role: Optional[ExpertRole] = None
    site_name: Optional[str] = None
    notes: Optional[str] = None
    current_level: Optional[int] = Field(default=None, ge=0, le=5)


class NominationDecision(BaseModel):
    notes: Optional[str] = None


class NominationRead(BaseModel):
    id: str
    org_id: str
    user_id: str
    nominated_by: Optional[str] = None
    competency_id: str
    network_id: Optional[str] = None
    current_level: int
    proposed_role: ExpertRole
    status: NominationStatus
    site_name: Optional[str] = None
    notes: Optional[str] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    decision_notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class NetworkCreate(BaseModel):
    competency_id: str
    name: str
    description: Optional[str] = None


class NetworkRead(BaseModel):
    id: str
    org_id: str
    competency_id: str
    name: str
    description: Optional[str] = None
    is_active: bool
    created_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class MemberRead(BaseModel):
    id: str
    network_id: str
    user_id: str
    role: ExpertRole
    nomination_id: Optional[str] = None
    joined_at: datetime

    class Config:
        from_attributes = True
