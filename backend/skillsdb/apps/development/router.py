from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from skillsdb.security import get_current_active_user
from skillsdb.apps.accounts.models import User
from skillsdb.database import get_db, get_read_db

from . import models, schemas, services


router = APIRouter(prefix="/development", tags=["development"])


@router.get("/activities", response_model=List[schemas.DevelopmentActivityRead])
def list_activities(
    trainee_id: Optional[str] = None,
    coach_id: Optional[str] = None,
    competency_id: Optional[str] = None,
    status_filter: Optional[models.ActivityStatus] = Query(None, alias="status"),
    activity_type: Optional[models.ActivityType] = None,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return services.list_activities(
        db,
        org_id=current_user.org_id,
        trainee_id=trainee_id,
        coach_id=coach_id,
        competency_id=competency_id,
        status=status_filter,
        activity_type=activity_type,
    )


@router.get("/activities/{activity_id}", response_model=schemas.DevelopmentActivityRead)
def get_activity(
    activity_id: str,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return services.get_activity(db, org_id=current_user.org_id, activity_id=activity_id)


@router.post("/activities/{activity_id}/start", response_model=schemas.DevelopmentActivityRead)
def start_activity(
    activity_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    activity = services.start_activity(db, actor=current_user, activity_id=activity_id)
    db.commit()
    return activity


@router.post("/activities/{activity_id}/ready", response_model=schemas.DevelopmentActivityRead)
def mark_ready(
    activity_id: str,
    payload: schemas.MarkReadyRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    activity = services.mark_ready(db, actor=current_user, activity_id=activity_id, note=payload.note)
    db.commit()
    return activity


@router.post("/activities/{activity_id}/validate", response_model=schemas.DevelopmentActivityRead)
def validate_activity(
    activity_id: str,
    payload: schemas.ValidateActivityRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    activity = services.validate_activity(
        db,
        actor=current_user,
        activity_id=activity_id,
        achieved_level=payload.achieved_level,
        notes=payload.notes,
    )
    db.commit()
    return activity


@router.post("/activities/{activity_id}/cancel", response_model=schemas.DevelopmentActivityRead)
def cancel_activity(
    activity_id: str,
    payload: schemas.CancelActivityRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    activity = services.cancel_activity(db, actor=current_user, activity_id=activity_id, reason=payload.reason)
    db.commit()
    return activity


@router.get("/activities/{activity_id}/feedback", response_model=List[schemas.FeedbackRead])
def list_feedback(
    activity_id: str,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return services.list_feedback(db, org_id=current_user.org_id, activity_id=activity_id)


@router.post(
    "/activities/{activity_id}/feedback",
    response_model=schemas.FeedbackRead,
    status_code=status.HTTP_201_CREATED,
)
def add_feedback(
    activity_id: str,
    payload: schemas.FeedbackCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    entry = services.add_feedback(
        db,
        actor=current_user,
        activity_id=activity_id,
        content=payload.content,
        feedback_type=payload.feedback_type,
    )
    db.commit()
    return entry
