# backend/skillsdb/apps/development/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityType(str, enum.Enum):
    COACHING = "coaching"
    VALIDATION_AUDIT = "validation_audit"


class ActivityStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VALIDATED = "validated"
    CANCELLED = "cancelled"


TERMINAL_ACTIVITY_STATUSES = frozenset({ActivityStatus.VALIDATED, ActivityStatus.CANCELLED})
OPEN_ACTIVITY_STATUSES = frozenset(
    {ActivityStatus.PENDING, ActivityStatus.IN_PROGRESS, ActivityStatus.COMPLETED}
)


class AuthorRole(str, enum.Enum):
    COACH = "coach"
    COACHEE = "coachee"
    OTHER = "other"


class FeedbackType(str, enum.Enum):
    PROGRESS = "progress"
    MILESTONE = "milestone"


class DevelopmentActivity(Base):
    """
    A coaching engagement, or the audit record of a validation.

    Coaching activities are raised when a trainee is assigned a competency
    they do not hold yet. Validation-audit activities are written already
    `validated` every time a level is confirmed.
    """

    __tablename__ = "development_activities"
    __table_args__ = (
        Index("idx_dev_activities_org_trainee_competency", "org_id", "trainee_id", "competency_id"),
        Index("idx_dev_activities_org_coach_status", "org_id", "coach_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    org_id = Column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    activity_type = Column(
        Enum(ActivityType, name="activity_type_enum", native_enum=False),
        nullable=False,
        default=ActivityType.COACHING,
        index=True,
    )

    trainee_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    coach_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    assigned_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    competency_id = Column(
        String(36),
        ForeignKey("competencies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    target_level = Column(Integer, nullable=False)

    status = Column(
        Enum(ActivityStatus, name="activity_status_enum", native_enum=False),
        nullable=False,
        default=ActivityStatus.PENDING,
        index=True,
    )

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    objectives = Column(Text, nullable=True)
    success_criteria = Column(Text, nullable=True)

    due_date = Column(Date, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    validated_at = Column(DateTime(timezone=True), nullable=True)
    validated_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    feedback = relationship(
        "ActivityFeedback",
        back_populates="activity",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="ActivityFeedback.created_at",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ACTIVITY_STATUSES

    def __repr__(self) -> str:
        return f"<DevelopmentActivity {self.id} {self.activity_type} {self.status}>"


class ActivityFeedback(Base):
    """Append-only comment thread on a development activity."""

    __tablename__ = "activity_feedback"
    __table_args__ = (Index("idx_activity_feedback_activity_created", "activity_id", "created_at"),)

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    org_id = Column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    activity_id = Column(
        String(36),
        ForeignKey("development_activities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    author_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    author_role = Column(
        Enum(AuthorRole, name="feedback_author_role_enum", native_enum=False),
        nullable=False,
    )
    feedback_type = Column(
        Enum(FeedbackType, name="feedback_type_enum", native_enum=False),
        nullable=False,
        default=FeedbackType.PROGRESS,
    )

    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    activity = relationship("DevelopmentActivity", back_populates="feedback")

    def __repr__(self) -> str:
        return f"<ActivityFeedback {self.id} activity={self.activity_id} {self.feedback_type}>"
