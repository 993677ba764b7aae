from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from skillsdb.security import get_current_active_user, require_roles
from skillsdb.apps.accounts.models import AccountRole, User
from skillsdb.database import get_db, get_read_db

from . import models, schemas, services


router = APIRouter(prefix="/experts", tags=["experts"])


@router.get("/eligibility", response_model=schemas.NominationEligibility)
def check_eligibility(
    user_id: str,
    competency_id: str,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return services.check_eligibility(
        db,
        org_id=current_user.org_id,
        user_id=user_id,
        competency_id=competency_id,
    )


@router.get("/nominations", response_model=List[schemas.NominationRead])
def list_nominations(
    status_filter: Optional[models.NominationStatus] = Query(None, alias="status"),
    competency_id: Optional[str] = None,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return services.list_nominations(
        db,
        org_id=current_user.org_id,
        status=status_filter,
        competency_id=competency_id,
    )


@router.post("/nominations", response_model=schemas.NominationRead, status_code=status.HTTP_201_CREATED)
def submit_nomination(
    payload: schemas.NominationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    nomination = services.submit_nomination(
        db,
        actor=current_user,
        user_id=payload.user_id,
        competency_id=payload.competency_id,
        proposed_role=payload.proposed_role,
        site_name=payload.site_name,
        notes=payload.notes,
        current_level=payload.current_level,
    )
    db.commit()
    return nomination


@router.post("/nominations/{nomination_id}/approve", response_model=schemas.NominationRead)
def approve_nomination(
    nomination_id: str,
    payload: schemas.NominationDecision,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AccountRole.ORG_ADMIN)),
):
    nomination = services.approve_nomination(
        db, actor=current_user, nomination_id=nomination_id, notes=payload.notes
    )
    db.commit()
    return nomination


@router.post("/nominations/{nomination_id}/reject", response_model=schemas.NominationRead)
def reject_nomination(
    nomination_id: str,
    payload: schemas.NominationDecision,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AccountRole.ORG_ADMIN)),
):
    nomination = services.reject_nomination(
        db, actor=current_user, nomination_id=nomination_id, notes=payload.notes
    )
    db.commit()
    return nomination


@router.get("/networks", response_model=List[schemas.NetworkRead])
def list_networks(
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return services.list_networks(db, org_id=current_user.org_id)


@router.post("/networks", response_model=schemas.NetworkRead, status_code=status.HTTP_201_CREATED)
def create_network(
    payload: schemas.NetworkCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AccountRole.ORG_ADMIN)),
):
    network = services.create_network(
        db,
        actor=current_user,
        competency_id=payload.competency_id,
        name=payload.name,
        description=payload.description,
    )
    db.commit()
    return network


@router.get("/networks/{network_id}/members", response_model=List[schemas.MemberRead])
def list_members(
    network_id: str,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return services.list_members(db, org_id=current_user.org_id, network_id=network_id)


@router.delete("/networks/{network_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    network_id: str,
    member_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AccountRole.ORG_ADMIN)),
):
    services.remove_member(db, actor=current_user, network_id=network_id, member_id=member_id)
    db.commit()
