# backend/skillsdb/apps/accounts/services.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from skillsdb.security import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    create_access_token,
    get_password_hash,
    password_needs_rehash,
    verify_password,
)

from . import models, schemas

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when login credentials are invalid or the account is inactive."""


def _normalise_email(value: str) -> str:
    return value.strip().lower()


def _normalise_slug(value: str) -> str:
    return (value or "").strip().lower()


def get_organisation_by_slug(db: Session, slug: str) -> Optional[models.Organisation]:
    return (
        db.query(models.Organisation)
        .filter(models.Organisation.login_slug == _normalise_slug(slug))
        .first()
    )


def create_user(
    db: Session,
    *,
    org_id: str,
    email: str,
    full_name: str,
    password: str,
    role: models.AccountRole = models.AccountRole.TRAINEE,
    site_name: Optional[str] = None,
    is_superuser: bool = False,
) -> models.User:
    user = models.User(
        org_id=org_id,
        email=_normalise_email(email),
        full_name=full_name.strip(),
        role=role,
        site_name=site_name,
        is_superuser=is_superuser,
        hashed_password=get_password_hash(password),
    )
    db.add(user)
    db.flush()
    return user


def authenticate_user(db: Session, *, login_req: schemas.LoginRequest) -> models.User:
    """
    Password login scoped to an organisation slug.

    Raises AuthenticationError on any failure; the message never says which
    part of the credentials was wrong.
    """
    org = get_organisation_by_slug(db, login_req.org_slug)
    if not org or not org.is_active:
        logger.info("Login failed: unknown organisation", extra={"org_slug": login_req.org_slug})
        raise AuthenticationError("Incorrect email, password or organisation.")

    user = (
        db.query(models.User)
        .filter(
            models.User.org_id == org.id,
            models.User.email == _normalise_email(login_req.email),
        )
        .first()
    )
    if not user or not verify_password(login_req.password, user.hashed_password):
        logger.info("Login failed: bad credentials", extra={"org_id": org.id})
        raise AuthenticationError("Incorrect email, password or organisation.")
    if not user.is_active:
        raise AuthenticationError("Account is inactive.")

    if password_needs_rehash(user.hashed_password):
        user.hashed_password = get_password_hash(login_req.password)
        logger.info("Upgraded password hash on login", extra={"org_id": org.id, "user_id": user.id})

    user.last_login_at = datetime.now(timezone.utc)
    db.add(user)
    db.flush()
    return user


def issue_access_token_for_user(user: models.User) -> Tuple[str, int]:
    """
    Create a JWT access token for the user.

    Returns (token_string, expires_in_seconds).
    """
    payload = {
        "sub": str(user.id),
        "org_id": user.org_id,
        "role": user.role.value if hasattr(user.role, "value") else str(user.role),
        "is_superuser": bool(user.is_superuser),
    }
    token = create_access_token(
        data=payload,
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return token, int(ACCESS_TOKEN_EXPIRE_MINUTES * 60)
