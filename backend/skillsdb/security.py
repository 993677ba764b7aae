# backend/skillsdb/security.py

"""
Authentication plumbing for the skills API.

Passwords are hashed with Argon2id; bcrypt hashes from accounts migrated out
of the previous dashboard still verify and are upgraded on the next login.
Access tokens are HS256 JWTs carrying the user id, organisation and role.

The FastAPI dependencies here only gate whole endpoints by role. Finer rules
(coach of this activity, never the trainee themselves) live in the services,
which receive the acting `User`.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Set, Union

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .database import get_db
from skillsdb.apps.accounts import models as account_models
from skillsdb.apps.accounts.models import AccountRole

SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

try:
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
except ValueError:
    ACCESS_TOKEN_EXPIRE_MINUTES = 60

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")

_hasher = PasswordHasher(
    time_cost=int(os.getenv("ARGON2_TIME_COST", "3")),
    memory_cost=int(os.getenv("ARGON2_MEMORY_COST", "65536")),  # KiB
    parallelism=int(os.getenv("ARGON2_PARALLELISM", "2")),
    hash_len=int(os.getenv("ARGON2_HASH_LEN", "32")),
    salt_len=int(os.getenv("ARGON2_SALT_LEN", "16")),
)


# ---------------------------------------------------------------------------
# PASSWORDS
# ---------------------------------------------------------------------------


def get_password_hash(password: str) -> str:
    return _hasher.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not plain_password or not hashed_password:
        return False

    if hashed_password.startswith("$argon2"):
        try:
            return _hasher.verify(hashed_password, plain_password)
        except (VerifyMismatchError, VerificationError, InvalidHash):
            return False

    if hashed_password.startswith(_BCRYPT_PREFIXES):
        try:
            return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
        except ValueError:
            return False

    return False


def password_needs_rehash(hashed_password: str) -> bool:
    """True for legacy bcrypt hashes and Argon2 hashes made with older parameters."""
    if not hashed_password or not hashed_password.startswith("$argon2"):
        return True
    try:
        return _hasher.check_needs_rehash(hashed_password)
    except InvalidHash:
        return True


# ---------------------------------------------------------------------------
# TOKENS
# ---------------------------------------------------------------------------


def create_access_token(
    *,
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    claims = dict(data)
    lifetime = expires_delta if expires_delta is not None else timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    claims["exp"] = datetime.now(timezone.utc) + lifetime
    return jwt.encode(claims, SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Return the token claims; raises JWTError when the token is invalid or expired."""
    claims = jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    if not claims.get("sub"):
        raise JWTError("token has no subject")
    return claims


# ---------------------------------------------------------------------------
# DEPENDENCIES
# ---------------------------------------------------------------------------


def _unauthorised() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_user_by_id(db: Session, user_id: Union[str, int, None]) -> Optional[account_models.User]:
    if user_id is None:
        return None
    return db.query(account_models.User).filter(account_models.User.id == str(user_id).strip()).first()


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> account_models.User:
    try:
        claims = decode_access_token(token)
    except JWTError:
        raise _unauthorised()

    user = get_user_by_id(db, claims["sub"])
    if user is None:
        raise _unauthorised()
    # A token minted for one organisation never authenticates in another.
    if claims.get("org_id") and claims["org_id"] != user.org_id:
        raise _unauthorised()
    return user


def get_current_active_user(
    current_user: account_models.User = Depends(get_current_user),
) -> account_models.User:
    if not current_user.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive user account")
    return current_user


def require_roles(
    *allowed_roles: Union[AccountRole, str],
) -> Callable[[account_models.User], account_models.User]:
    """
    Dependency factory gating an endpoint to the given roles.

        current_user: User = Depends(require_roles(AccountRole.ORG_ADMIN, AccountRole.MANAGER))

    Superusers always pass.
    """
    roles: Set[AccountRole] = set()
    for role in allowed_roles:
        try:
            roles.add(role if isinstance(role, AccountRole) else AccountRole(role))
        except ValueError:
            raise ValueError(f"Unknown role {role!r} passed to require_roles()")

    def dependency(
        current_user: account_models.User = Depends(get_current_active_user),
    ) -> account_models.User:
        if current_user.is_superuser or current_user.role in roles:
            return current_user
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions for this operation",
        )

    return dependency
