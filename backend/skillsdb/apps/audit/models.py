from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, JSON, String, desc

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(Base):
    """
    Append-only audit trail for assignment, coaching, assessment, nomination
    and module review actions.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_events_org_entity", "org_id", "entity_type", "entity_id"),
        Index("ix_audit_events_org_action", "org_id", "action"),
        Index("ix_audit_events_org_time_desc", "org_id", desc("occurred_at")),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    org_id = Column(String(36), ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False, index=True)
    entity_type = Column(String(64), nullable=False, index=True)
    entity_id = Column(String(64), nullable=False, index=True)
    action = Column(String(64), nullable=False, index=True)
    actor_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)
    correlation_id = Column(String(128), nullable=True, index=True)
    metadata_json = Column("metadata", JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditEvent id={self.id} entity={self.entity_type}:{self.entity_id} action={self.action}>"
