# backend/skillsdb/apps/competencies/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


MIN_LEVEL = 1
MAX_LEVEL = 5

LEVEL_NAMES = {
    1: "Awareness",
    2: "Knowledge",
    3: "Practitioner",
    4: "Proficient",
    5: "Expert",
}


class UserCompetencyStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    ACHIEVED = "achieved"


# ---------------------------------------------------------------------------
# COMPETENCY CATALOG
# ---------------------------------------------------------------------------


class Competency(Base):
    """
    A skill with five proficiency levels, each carrying its own rubric text.

    Treated as reference data while assignments reference it: lifecycle
    operations read it but never change it.
    """

    __tablename__ = "competencies"
    __table_args__ = (
        UniqueConstraint("org_id", "name", name="uq_competencies_org_name"),
        Index("idx_competencies_org_active", "org_id", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    org_id = Column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(128), nullable=True, index=True)

    owner_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        doc="Default coach for trainees who need coaching on this competency.",
    )

    level_1_description = Column(Text, nullable=True)
    level_2_description = Column(Text, nullable=True)
    level_3_description = Column(Text, nullable=True)
    level_4_description = Column(Text, nullable=True)
    level_5_description = Column(Text, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    assignments = relationship("UserCompetency", back_populates="competency", lazy="selectin")

    def rubric_for(self, level: int) -> str:
        if level < MIN_LEVEL or level > MAX_LEVEL:
            raise ValueError(f"Level must be between {MIN_LEVEL} and {MAX_LEVEL}")
        text = getattr(self, f"level_{level}_description")
        return text or LEVEL_NAMES[level]

    def __repr__(self) -> str:
        return f"<Competency {self.name}>"


# ---------------------------------------------------------------------------
# ASSIGNMENT
# ---------------------------------------------------------------------------


class UserCompetency(Base):
    """
    The link between a trainee and a competency.

    At most one row per (user, competency); the unique constraint is the
    authoritative duplicate check for concurrent assignment.
    """

    __tablename__ = "user_competencies"
    __table_args__ = (
        UniqueConstraint("user_id", "competency_id", name="uq_user_competencies_user_competency"),
        CheckConstraint("current_level >= 0 AND current_level <= 5", name="ck_user_competencies_current_level"),
        CheckConstraint("target_level >= 1 AND target_level <= 5", name="ck_user_competencies_target_level"),
        Index("idx_user_competencies_org_status", "org_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    org_id = Column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    competency_id = Column(
        String(36),
        ForeignKey("competencies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # 0 = not yet competent
    current_level = Column(Integer, nullable=False, default=0)
    target_level = Column(Integer, nullable=False)

    status = Column(
        Enum(UserCompetencyStatus, name="user_competency_status_enum", native_enum=False),
        nullable=False,
        default=UserCompetencyStatus.NOT_STARTED,
        index=True,
    )

    target_date = Column(Date, nullable=True)
    last_assessment_date = Column(DateTime(timezone=True), nullable=True)

    assigned_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    competency = relationship("Competency", back_populates="assignments", lazy="joined")

    @property
    def gap(self) -> int:
        return (self.target_level or 0) - (self.current_level or 0)

    def __repr__(self) -> str:
        return (
            f"<UserCompetency user={self.user_id} competency={self.competency_id} "
            f"{self.current_level}/{self.target_level} {self.status}>"
        )


# ---------------------------------------------------------------------------
# PROFILES
# ---------------------------------------------------------------------------


class CompetencyProfile(Base):
    """A named bundle of competencies, each with a default target level, assigned as a unit."""

    __tablename__ = "competency_profiles"
    __table_args__ = (UniqueConstraint("org_id", "name", name="uq_competency_profiles_org_name"),)

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    org_id = Column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Default coach for everyone the profile is assigned to.
    owner_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    items = relationship(
        "ProfileCompetency",
        back_populates="profile",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProfileCompetency.position",
    )

    def __repr__(self) -> str:
        return f"<CompetencyProfile {self.name}>"


class ProfileCompetency(Base):
    __tablename__ = "profile_competencies"
    __table_args__ = (
        UniqueConstraint("profile_id", "competency_id", name="uq_profile_competencies_profile_competency"),
        CheckConstraint(
            "default_target_level >= 1 AND default_target_level <= 5",
            name="ck_profile_competencies_target_level",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    profile_id = Column(
        String(36),
        ForeignKey("competency_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    competency_id = Column(
        String(36),
        ForeignKey("competencies.id", ondelete="CASCADE"),
        nullable=False,
    )
    default_target_level = Column(Integer, nullable=False, default=3)
    position = Column(Integer, nullable=False, default=0)

    profile = relationship("CompetencyProfile", back_populates="items")


class ProfileAssignment(Base):
    """Records that a profile was assigned to a user; one row per (profile, user)."""

    __tablename__ = "profile_assignments"
    __table_args__ = (
        UniqueConstraint("profile_id", "user_id", name="uq_profile_assignments_profile_user"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    org_id = Column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    profile_id = Column(
        String(36),
        ForeignKey("competency_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    coach_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    target_date = Column(Date, nullable=True)
    assigned_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
