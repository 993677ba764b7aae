from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationType(str, enum.Enum):
    COMPETENCY_ASSIGNED = "competency_assigned"
    COACHING_ASSIGNED = "coaching_assigned"
    VALIDATION_REQUIRED = "validation_required"
    ACTIVITY_VALIDATED = "activity_validated"
    ACTIVITY_CANCELLED = "activity_cancelled"
    NOMINATION_SUBMITTED = "nomination_submitted"
    NOMINATION_APPROVED = "nomination_approved"
    NOMINATION_REJECTED = "nomination_rejected"
    MODULE_SUBMITTED = "module_submitted"
    MODULE_PUBLISHED = "module_published"
    MODULE_RETURNED = "module_returned"


class Notification(Base):
    """
    In-app notification record. Delivery (email, push) happens elsewhere;
    this table is the whole contract.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_org_user_created", "org_id", "user_id", "created_at"),
        Index("idx_notifications_org_user_unread", "org_id", "user_id", "read_at"),
        UniqueConstraint("org_id", "user_id", "dedupe_key", name="uq_notifications_dedupe"),
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

    type = Column(
        Enum(NotificationType, name="notification_type_enum", native_enum=False),
        nullable=False,
        index=True,
    )

    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)

    link_path = Column(String(255), nullable=True, doc="Frontend route for deep-linking (optional).")

    # Optional dedupe key to avoid spamming (e.g. activity:123:validation_required)
    dedupe_key = Column(String(255), nullable=True)

    created_by = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    read_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Notification {self.id} user={self.user_id} type={self.type}>"
