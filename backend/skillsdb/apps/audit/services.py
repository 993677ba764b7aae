from __future__ import annotations

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from . import models, schemas

logger = logging.getLogger(__name__)


def create_audit_event(
    db: Session,
    *,
    org_id: str,
    data: schemas.AuditEventCreate,
) -> models.AuditEvent:
    values = data.model_dump(exclude={"metadata", "occurred_at"})
    event = models.AuditEvent(org_id=org_id, metadata_json=data.metadata, **values)
    if data.occurred_at is not None:
        event.occurred_at = data.occurred_at
    db.add(event)
    db.flush()
    return event


def log_event(
    db: Session,
    *,
    org_id: str,
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    action: str,
    before: Optional[dict] = None,
    after: Optional[dict] = None,
    correlation_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    critical: bool = False,
) -> Optional[models.AuditEvent]:
    """
    Record one audit event inside its own savepoint.

    Status transitions pass `critical=True` and a failed write propagates,
    taking the transition down with it. Anything else is logged and dropped,
    leaving the caller's transaction intact.
    """
    data = schemas.AuditEventCreate(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_user_id=actor_user_id,
        before=before,
        after=after,
        correlation_id=correlation_id,
        metadata=metadata,
    )
    try:
        with db.begin_nested():
            return create_audit_event(db, org_id=org_id, data=data)
    except Exception:
        logger.warning(
            "Audit write failed",
            extra={
                "org_id": org_id,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "action": action,
                "critical": critical,
            },
            exc_info=True,
        )
        if critical:
            raise
        return None


def list_audit_events(
    db: Session,
    *,
    org_id: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[models.AuditEvent]:
    """Newest first."""
    query = db.query(models.AuditEvent).filter(models.AuditEvent.org_id == org_id)
    if entity_type:
        query = query.filter(models.AuditEvent.entity_type == entity_type)
    if entity_id:
        query = query.filter(models.AuditEvent.entity_id == entity_id)
    if action:
        query = query.filter(models.AuditEvent.action == action)
    if actor_user_id:
        query = query.filter(models.AuditEvent.actor_user_id == actor_user_id)
    if start:
        query = query.filter(models.AuditEvent.occurred_at >= start)
    if end:
        query = query.filter(models.AuditEvent.occurred_at <= end)
    return query.order_by(models.AuditEvent.occurred_at.desc()).all()


def entity_history(
    db: Session,
    *,
    org_id: str,
    entity_type: str,
    entity_id: str,
) -> List[models.AuditEvent]:
    """Oldest first: the order a reviewer reads an assignment's or activity's timeline."""
    return (
        db.query(models.AuditEvent)
        .filter(
            models.AuditEvent.org_id == org_id,
            models.AuditEvent.entity_type == entity_type,
            models.AuditEvent.entity_id == entity_id,
        )
        .order_by(models.AuditEvent.occurred_at.asc(), models.AuditEvent.id.asc())
        .all()
    )
