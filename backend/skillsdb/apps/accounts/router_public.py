from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from skillsdb.database import get_db
from skillsdb.security import get_current_active_user

from . import models, schemas, services


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/login",
    response_model=schemas.Token,
    summary="Login with organisation slug, email and password",
)
def login(
    payload: schemas.LoginRequest,
    db: Session = Depends(get_db),
):
    try:
        user = services.authenticate_user(db, login_req=payload)
    except services.AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc) or "Incorrect email, password or organisation.",
        )
    db.commit()

    token, expires_in = services.issue_access_token_for_user(user)
    return schemas.Token(access_token=token, expires_in=expires_in, user=user)


@router.get("/me", response_model=schemas.UserRead)
def read_me(current_user: models.User = Depends(get_current_active_user)):
    return current_user
