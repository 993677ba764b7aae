from __future__ import annotations

import bcrypt
import pytest
from fastapi import HTTPException
from jose import jwt

from skillsdb import security
from skillsdb.apps.accounts import models, schemas, services


def _create_org(db, slug: str = "acme", is_active: bool = True) -> models.Organisation:
    org = models.Organisation(code=slug.upper(), name=f"{slug.title()} Ltd", login_slug=slug, is_active=is_active)
    db.add(org)
    db.commit()
    return org


def _login(db, slug="acme", email="Coach@Example.com", password="s3cret-pass"):
    return services.authenticate_user(
        db,
        login_req=schemas.LoginRequest(org_slug=slug, email=email, password=password),
    )


def test_login_normalises_email_and_stamps_last_login(db_session):
    org = _create_org(db_session)
    user = services.create_user(
        db_session,
        org_id=org.id,
        email="  Coach@Example.com ",
        full_name="Casey Coach",
        password="s3cret-pass",
        role=models.AccountRole.COACH,
    )
    db_session.commit()
    assert user.email == "coach@example.com"
    assert user.hashed_password.startswith("$argon2")

    logged_in = _login(db_session, slug=" ACME ")

    assert logged_in.id == user.id
    assert logged_in.last_login_at is not None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"password": "wrong"},
        {"email": "nobody@example.com"},
        {"slug": "unknown"},
    ],
)
def test_bad_credentials_raise_authentication_error(db_session, kwargs):
    org = _create_org(db_session)
    services.create_user(
        db_session, org_id=org.id, email="coach@example.com", full_name="Casey", password="s3cret-pass"
    )
    db_session.commit()

    with pytest.raises(services.AuthenticationError):
        _login(db_session, **kwargs)


def test_inactive_user_cannot_login(db_session):
    org = _create_org(db_session)
    user = services.create_user(
        db_session, org_id=org.id, email="coach@example.com", full_name="Casey", password="s3cret-pass"
    )
    user.is_active = False
    db_session.commit()

    with pytest.raises(services.AuthenticationError):
        _login(db_session)


def test_legacy_bcrypt_hash_verifies_and_is_upgraded_on_login(db_session):
    legacy = bcrypt.hashpw(b"s3cret-pass", bcrypt.gensalt(rounds=4)).decode("utf-8")
    assert security.verify_password("s3cret-pass", legacy) is True
    assert security.verify_password("other", legacy) is False
    assert security.verify_password("", legacy) is False
    assert security.password_needs_rehash(legacy) is True

    org = _create_org(db_session)
    user = models.User(
        org_id=org.id,
        email="coach@example.com",
        full_name="Casey",
        role=models.AccountRole.COACH,
        hashed_password=legacy,
    )
    db_session.add(user)
    db_session.commit()

    _login(db_session)

    assert user.hashed_password.startswith("$argon2")
    assert security.password_needs_rehash(user.hashed_password) is False


def test_issued_token_resolves_current_user(db_session):
    org = _create_org(db_session)
    user = services.create_user(
        db_session,
        org_id=org.id,
        email="assessor@example.com",
        full_name="Ari Assessor",
        password="s3cret-pass",
        role=models.AccountRole.ASSESSOR,
    )
    db_session.commit()

    token, expires_in = services.issue_access_token_for_user(user)
    claims = jwt.decode(token, security.SECRET_KEY, algorithms=[security.JWT_ALGORITHM])

    assert claims["sub"] == user.id
    assert claims["role"] == "ASSESSOR"
    assert expires_in == security.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    assert security.get_current_user(token=token, db=db_session).id == user.id

    with pytest.raises(HTTPException) as excinfo:
        security.get_current_user(token="not-a-token", db=db_session)
    assert excinfo.value.status_code == 401

    foreign = security.create_access_token(data={"sub": user.id, "org_id": "another-org"})
    with pytest.raises(HTTPException):
        security.get_current_user(token=foreign, db=db_session)


def test_require_roles_allows_listed_roles_and_superusers(db_session):
    org = _create_org(db_session)
    trainee = services.create_user(
        db_session, org_id=org.id, email="t@example.com", full_name="Tia", password="pw-123456"
    )
    platform = services.create_user(
        db_session,
        org_id=org.id,
        email="root@example.com",
        full_name="Root",
        password="pw-123456",
        is_superuser=True,
    )
    check = security.require_roles(models.AccountRole.MANAGER, "ORG_ADMIN")

    assert check(current_user=platform) is platform
    with pytest.raises(HTTPException) as excinfo:
        check(current_user=trainee)
    assert excinfo.value.status_code == 403

    with pytest.raises(ValueError):
        security.require_roles("PILOT")
