from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from skillsdb.security import get_current_active_user
from skillsdb.apps.accounts.models import User
from skillsdb.database import get_db

from . import schemas, service


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/", response_model=List[schemas.NotificationRead])
def list_my_notifications(
    unread_only: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return service.list_notifications(db, user=current_user, unread_only=unread_only)


@router.post("/{notification_id}/read", response_model=schemas.NotificationRead)
def mark_notification_read(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    note = service.mark_read(db, user=current_user, notification_id=notification_id)
    db.commit()
    return note


@router.post("/read-all", response_model=schemas.MarkAllReadResult)
def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    updated = service.mark_all_read(db, user=current_user)
    db.commit()
    return schemas.MarkAllReadResult(updated=updated)
