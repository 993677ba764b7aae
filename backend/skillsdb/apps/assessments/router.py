from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from skillsdb.security import get_current_active_user
from skillsdb.apps.accounts.models import User
from skillsdb.database import get_db, get_read_db

from . import schemas, services


router = APIRouter(prefix="/assessments", tags=["assessments"])


@router.get("/", response_model=List[schemas.AssessmentRead])
def list_assessments(
    user_id: Optional[str] = None,
    competency_id: Optional[str] = None,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return services.list_assessments(
        db,
        org_id=current_user.org_id,
        user_id=user_id,
        competency_id=competency_id,
    )


@router.post(
    "/user-competencies/{user_competency_id}",
    response_model=schemas.AssessmentRead,
    status_code=status.HTTP_201_CREATED,
)
def assess(
    user_competency_id: str,
    payload: schemas.AssessRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    assessment = services.assess(
        db,
        actor=current_user,
        user_competency_id=user_competency_id,
        criteria_results=payload.criteria_results,
        notes=payload.notes,
    )
    db.commit()
    return assessment


@router.post("/batch", response_model=schemas.AssessmentBatchRead)
def assess_batch(
    payload: schemas.BatchAssessRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    result = services.assess_batch(db, actor=current_user, items=payload.items)
    db.commit()
    return schemas.AssessmentBatchRead(
        succeeded=[schemas.AssessmentRead.model_validate(item) for item in result.succeeded],
        failed=[schemas.FailedItemRead.model_validate(item) for item in result.failed],
        summary=result.summary(),
    )


@router.post(
    "/user-competencies/{user_competency_id}/validations",
    response_model=schemas.ValidationRecordRead,
    status_code=status.HTTP_201_CREATED,
)
def record_validation(
    user_competency_id: str,
    payload: schemas.ValidationRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    activity = services.record_validation(
        db,
        actor=current_user,
        user_competency_id=user_competency_id,
        achieved_level=payload.achieved_level,
        notes=payload.notes,
    )
    db.commit()
    return activity
