# backend/skillsdb/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from skillsdb.database import Base
from skillsdb.utils.identifiers import generate_uuid7


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class AccountRole(str, enum.Enum):
    """High-level roles used across the dashboard.

    Who may coach a particular trainee is decided per activity (coach_id),
    not by role alone.
    """

    SUPERUSER = "SUPERUSER"           # Platform owner
    ORG_ADMIN = "ORG_ADMIN"           # Organisation admin, approves nominations
    MANAGER = "MANAGER"               # Assigns competencies, reviews modules
    COACH = "COACH"
    ASSESSOR = "ASSESSOR"
    TRAINEE = "TRAINEE"


# Roles allowed to confirm levels without being the activity coach.
VALIDATOR_ROLES = frozenset(
    {
        AccountRole.SUPERUSER,
        AccountRole.ORG_ADMIN,
        AccountRole.MANAGER,
        AccountRole.ASSESSOR,
    }
)

ADMIN_ROLES = frozenset({AccountRole.SUPERUSER, AccountRole.ORG_ADMIN})


class Organisation(Base):
    """
    Tenant scope. Every lifecycle record belongs to exactly one organisation.
    """

    __tablename__ = "organisations"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    code = Column(String(32), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    login_slug = Column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
        doc="Short slug used at login, e.g. 'acme-plant-2'",
    )

    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    users = relationship("User", back_populates="organisation", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Organisation {self.code} {self.name}>"


class User(Base):
    """
    Dashboard user: trainee, coach, assessor, manager or admin.

    `site_name` is the factory/site a user works at; it is copied onto
    expert nominations for site-level (FSME) experts.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("org_id", "email", name="uq_users_org_email"),
        Index("idx_users_org_role_active", "org_id", "role", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)

    org_id = Column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)

    role = Column(
        Enum(AccountRole, name="account_role_enum", native_enum=False),
        nullable=False,
        default=AccountRole.TRAINEE,
        index=True,
    )

    site_name = Column(String(255), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    is_superuser = Column(Boolean, nullable=False, default=False, index=True)

    hashed_password = Column(String(255), nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    organisation = relationship("Organisation", back_populates="users")

    @property
    def is_admin(self) -> bool:
        return bool(self.is_superuser) or self.role in ADMIN_ROLES

    @property
    def can_validate(self) -> bool:
        return bool(self.is_superuser) or self.role in VALIDATOR_ROLES

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
