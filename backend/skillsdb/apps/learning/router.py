from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from skillsdb.security import get_current_active_user, require_roles
from skillsdb.apps.accounts.models import AccountRole, User
from skillsdb.database import get_db, get_read_db

from . import models, schemas, services


router = APIRouter(prefix="/learning", tags=["learning"])


@router.get("/modules", response_model=List[schemas.ModuleRead])
def list_modules(
    status_filter: Optional[models.ModuleStatus] = Query(None, alias="status"),
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return services.list_modules(db, org_id=current_user.org_id, status=status_filter)


@router.post("/modules", response_model=schemas.ModuleRead, status_code=status.HTTP_201_CREATED)
def create_module(
    payload: schemas.ModuleCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    module = services.create_module(
        db,
        actor=current_user,
        title=payload.title,
        description=payload.description,
        content=payload.content,
        competency_id=payload.competency_id,
    )
    db.commit()
    return module


@router.post("/modules/{module_id}/submit", response_model=schemas.ModuleRead)
def submit_module(
    module_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    module = services.submit_module(db, actor=current_user, module_id=module_id)
    db.commit()
    return module


@router.post("/modules/{module_id}/approve", response_model=schemas.ModuleRead)
def approve_module(
    module_id: str,
    payload: schemas.ModuleReview,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AccountRole.ORG_ADMIN, AccountRole.MANAGER)),
):
    module = services.approve_module(db, reviewer=current_user, module_id=module_id, notes=payload.notes)
    db.commit()
    return module


@router.post("/modules/{module_id}/reject", response_model=schemas.ModuleRead)
def reject_module(
    module_id: str,
    payload: schemas.ModuleReview,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AccountRole.ORG_ADMIN, AccountRole.MANAGER)),
):
    module = services.reject_module(db, reviewer=current_user, module_id=module_id, notes=payload.notes)
    db.commit()
    return module
