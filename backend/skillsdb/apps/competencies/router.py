from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from skillsdb.security import get_current_active_user, require_roles
from skillsdb.apps.accounts.models import AccountRole, User
from skillsdb.database import get_db, get_read_db

from . import models, schemas, services


router = APIRouter(prefix="/competencies", tags=["competencies"])


def _batch_read(result) -> schemas.AssignmentBatchRead:
    return schemas.AssignmentBatchRead(
        succeeded=[schemas.UserCompetencyRead.model_validate(uc) for uc in result.succeeded],
        skipped=[schemas.SkippedItemRead.model_validate(item) for item in result.skipped],
        failed=[schemas.FailedItemRead.model_validate(item) for item in result.failed],
        summary=result.summary(),
    )


@router.get("/", response_model=List[schemas.CompetencyRead])
def list_competencies(
    active_only: bool = True,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return services.list_competencies(db, org_id=current_user.org_id, active_only=active_only)


@router.post("/", response_model=schemas.CompetencyRead, status_code=status.HTTP_201_CREATED)
def create_competency(
    payload: schemas.CompetencyCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AccountRole.ORG_ADMIN)),
):
    competency = services.create_competency(db, actor=current_user, data=payload)
    db.commit()
    return competency


@router.get("/assignments", response_model=List[schemas.UserCompetencyRead])
def list_assignments(
    user_id: Optional[str] = None,
    competency_id: Optional[str] = None,
    status_filter: Optional[models.UserCompetencyStatus] = Query(None, alias="status"),
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return services.list_user_competencies(
        db,
        org_id=current_user.org_id,
        user_id=user_id,
        competency_id=competency_id,
        status=status_filter,
    )


@router.post("/assignments", response_model=schemas.AssignmentBatchRead)
def assign_competency(
    payload: schemas.AssignmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AccountRole.ORG_ADMIN, AccountRole.MANAGER)),
):
    result = services.assign_competency(
        db,
        actor=current_user,
        competency_id=payload.competency_id,
        target_level=payload.target_level,
        user_ids=payload.user_ids,
        mode=payload.resolved_mode(),
        coach_id=payload.coach_id,
        target_date=payload.target_date,
    )
    db.commit()
    return _batch_read(result)


@router.patch("/assignments/{user_competency_id}", response_model=schemas.UserCompetencyRead)
def update_assignment(
    user_competency_id: str,
    payload: schemas.UserCompetencyUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AccountRole.ORG_ADMIN, AccountRole.MANAGER)),
):
    uc = services.update_assignment(
        db,
        actor=current_user,
        user_competency_id=user_competency_id,
        target_level=payload.target_level,
        target_date=payload.target_date,
    )
    db.commit()
    return uc


@router.delete("/assignments/{user_competency_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_assignment(
    user_competency_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AccountRole.ORG_ADMIN, AccountRole.MANAGER)),
):
    services.remove_assignment(db, actor=current_user, user_competency_id=user_competency_id)
    db.commit()


@router.get("/gap-analysis", response_model=schemas.GapAnalysisRead)
def gap_analysis(
    user_ids: Optional[List[str]] = Query(None),
    db: Session = Depends(get_read_db),
    current_user: User = Depends(
        require_roles(AccountRole.ORG_ADMIN, AccountRole.MANAGER, AccountRole.COACH)
    ),
):
    return services.gap_analysis(db, org_id=current_user.org_id, user_ids=user_ids)


@router.get("/profiles", response_model=List[schemas.CompetencyProfileRead])
def list_profiles(
    active_only: bool = True,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return services.list_profiles(db, org_id=current_user.org_id, active_only=active_only)


@router.post("/profiles", response_model=schemas.CompetencyProfileRead, status_code=status.HTTP_201_CREATED)
def create_profile(
    payload: schemas.CompetencyProfileCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AccountRole.ORG_ADMIN, AccountRole.MANAGER)),
):
    profile = services.create_profile(db, actor=current_user, data=payload)
    db.commit()
    return profile


@router.post("/profiles/{profile_id}/assign", response_model=schemas.AssignmentBatchRead)
def assign_profile(
    profile_id: str,
    payload: schemas.ProfileAssignmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AccountRole.ORG_ADMIN, AccountRole.MANAGER)),
):
    result = services.assign_profile(
        db,
        actor=current_user,
        profile_id=profile_id,
        user_ids=payload.user_ids,
        coach_id=payload.coach_id,
        target_date=payload.target_date,
    )
    db.commit()
    return _batch_read(result)


@router.get("/{competency_id}", response_model=schemas.CompetencyRead)
def get_competency(
    competency_id: str,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return services.get_competency(db, org_id=current_user.org_id, competency_id=competency_id)
