from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from skillsdb.errors import ValidationError

from .models import UserCompetencyStatus


# ---------------------------------------------------------------------------
# ASSIGNMENT MODE
# ---------------------------------------------------------------------------


class NeedsCoaching(BaseModel):
    """The trainee does not hold the competency yet; a coaching activity is raised."""

    kind: Literal["needs_coaching"] = "needs_coaching"

    @property
    def current_level(self) -> int:
        return 0


class AlreadyCompetent(BaseModel):
    """The trainee already holds `level`; the assignment is recorded as validated."""

    kind: Literal["already_competent"] = "already_competent"
    level: int = Field(ge=1, le=5)

    @property
    def current_level(self) -> int:
        return self.level


AssignmentMode = Annotated[Union[NeedsCoaching, AlreadyCompetent], Field(discriminator="kind")]


def mode_for_level(level: Optional[int]) -> Union[NeedsCoaching, AlreadyCompetent]:
    """Map the numeric `current_level` input (0 = not yet competent) onto an AssignmentMode."""
    if level is None or level == 0:
        return NeedsCoaching()
    if 1 <= level <= 5:
        return AlreadyCompetent(level=level)
    raise ValidationError.single("invalid_level", "current_level", "current_level must be between 0 and 5")


# ---------------------------------------------------------------------------
# COMPETENCY
# ---------------------------------------------------------------------------


class CompetencyBase(BaseModel):
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    owner_id: Optional[str] = None
    level_1_description: Optional[str] = None
    level_2_description: Optional[str] = None
    level_3_description: Optional[str] = None
    level_4_description: Optional[str] = None
    level_5_description: Optional[str] = None


class CompetencyCreate(CompetencyBase):
    pass


class CompetencyRead(CompetencyBase):
    id: str
    org_id: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# USER COMPETENCY
# ---------------------------------------------------------------------------


class AssignmentRequest(BaseModel):
    """
    Accepts either an explicit `mode` or the numeric `current_level`
    (0 = needs coaching). Supplying both is rejected.
    """

    competency_id: str
    target_level: int = Field(ge=1, le=5)
    user_ids: List[str]
    mode: Optional[AssignmentMode] = None
    current_level: Optional[int] = Field(default=None, ge=0, le=5)
    coach_id: Optional[str] = None
    target_date: Optional[date] = None

    @model_validator(mode="after")
    def _one_mode(self) -> "AssignmentRequest":
        if self.mode is not None and self.current_level is not None:
            raise ValueError("Provide either mode or current_level, not both")
        return self

    def resolved_mode(self) -> Union[NeedsCoaching, AlreadyCompetent]:
        if self.mode is not None:
            return self.mode
        return mode_for_level(self.current_level)


class UserCompetencyUpdate(BaseModel):
    target_level: Optional[int] = Field(default=None, ge=1, le=5)
    target_date: Optional[date] = None


class UserCompetencyRead(BaseModel):
    id: str
    org_id: str
    user_id: str
    competency_id: str
    current_level: int
    target_level: int
    status: UserCompetencyStatus
    target_date: Optional[date] = None
    last_assessment_date: Optional[datetime] = None
    assigned_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SkippedItemRead(BaseModel):
    key: str
    reason: str

    class Config:
        from_attributes = True


class FailedItemRead(BaseModel):
    key: str
    code: str
    error: str

    class Config:
        from_attributes = True


class AssignmentBatchRead(BaseModel):
    succeeded: List[UserCompetencyRead] = Field(default_factory=list)
    skipped: List[SkippedItemRead] = Field(default_factory=list)
    failed: List[FailedItemRead] = Field(default_factory=list)
    summary: Dict[str, int] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# PROFILES
# ---------------------------------------------------------------------------


class ProfileItem(BaseModel):
    competency_id: str
    default_target_level: int = Field(default=3, ge=1, le=5)


class CompetencyProfileCreate(BaseModel):
    name: str
    description: Optional[str] = None
    owner_id: Optional[str] = None
    items: List[ProfileItem] = Field(default_factory=list)


class ProfileItemRead(ProfileItem):
    id: str
    position: int

    class Config:
        from_attributes = True


class CompetencyProfileRead(BaseModel):
    id: str
    org_id: str
    name: str
    description: Optional[str] = None
    owner_id: Optional[str] = None
    is_active: bool
    items: List[ProfileItemRead] = Field(default_factory=list)
    created_at: datetime

    class Config:
        from_attributes = True


class ProfileAssignmentRequest(BaseModel):
    user_ids: List[str]
    coach_id: Optional[str] = None
    target_date: Optional[date] = None


# ---------------------------------------------------------------------------
# GAP ANALYSIS
# ---------------------------------------------------------------------------


GapBand = Literal["achieved", "behind", "critical"]


class GapRow(BaseModel):
    user_competency_id: str
    user_id: str
    competency_id: str
    competency_name: str
    current_level: int
    target_level: int
    gap: int
    band: GapBand


class GapAnalysisRead(BaseModel):
    rows: List[GapRow] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)
