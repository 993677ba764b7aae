from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssessmentStatus(str, enum.Enum):
    PENDING = "pending"
    VALIDATED = "validated"


class Assessment(Base):
    """
    One assessment event for one competency. Immutable once written.
    """

    __tablename__ = "assessments"
    __table_args__ = (
        CheckConstraint("level_achieved >= 1 AND level_achieved <= 5", name="ck_assessments_level"),
        Index("idx_assessments_org_user_competency", "org_id", "user_id", "competency_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    org_id = Column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    competency_id = Column(
        String(36),
        ForeignKey("competencies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # History outlives an explicitly removed assignment.
    user_competency_id = Column(
        String(36),
        ForeignKey("user_competencies.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    assessed_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assessment_date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    level_achieved = Column(Integer, nullable=False)
    criteria_results = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(
        Enum(AssessmentStatus, name="assessment_status_enum", native_enum=False),
        nullable=False,
        default=AssessmentStatus.VALIDATED,
    )

    def __repr__(self) -> str:
        return f"<Assessment {self.id} user={self.user_id} level={self.level_achieved}>"
