from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from skillsdb.security import require_roles
from skillsdb.apps.accounts.models import AccountRole, User
from skillsdb.database import get_read_db

from . import schemas, services


router = APIRouter(prefix="/audit", tags=["audit"])

_AUDIT_READERS = (AccountRole.ORG_ADMIN, AccountRole.MANAGER, AccountRole.ASSESSOR)


@router.get("/", response_model=List[schemas.AuditEventRead])
def list_audit_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(require_roles(*_AUDIT_READERS)),
):
    return services.list_audit_events(
        db,
        org_id=current_user.org_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_user_id=actor_user_id,
        start=start,
        end=end,
    )


@router.get("/{entity_type}/{entity_id}/history", response_model=List[schemas.AuditEventRead])
def entity_history(
    entity_type: str,
    entity_id: str,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(require_roles(*_AUDIT_READERS)),
):
    return services.entity_history(db, org_id=current_user.org_id, entity_type=entity_type, entity_id=entity_id)
