from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExpertRole(str, enum.Enum):
    FSME = "fsme"  # factory/site subject matter expert
    GSME = "gsme"  # global subject matter expert


class NominationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ExpertNetwork(Base):
    """One network of subject matter experts per competency per organisation."""

    __tablename__ = "expert_networks"
    __table_args__ = (UniqueConstraint("org_id", "competency_id", name="uq_expert_networks_org_competency"),)

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    org_id = Column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    competency_id = Column(
        String(36),
        ForeignKey("competencies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    members = relationship(
        "ExpertNetworkMember",
        back_populates="network",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ExpertNetwork {self.name}>"


class ExpertNomination(Base):
    """
    A proposal to admit a trainee into a competency's expert network.

    network_id stays null until the network exists; creating the network
    attaches pending nominations.
    """

    __tablename__ = "expert_nominations"
    __table_args__ = (
        # Enum columns store member names, hence 'PENDING'.
        Index(
            "uq_expert_nominations_pending",
            "user_id",
            "competency_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        Index("idx_expert_nominations_org_status", "org_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    org_id = Column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    nominated_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    competency_id = Column(
        String(36),
        ForeignKey("competencies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    network_id = Column(
        String(36),
        ForeignKey("expert_networks.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    current_level = Column(Integer, nullable=False)
    proposed_role = Column(
        Enum(ExpertRole, name="expert_role_enum", native_enum=False),
        nullable=False,
        default=ExpertRole.FSME,
    )
    status = Column(
        Enum(NominationStatus, name="nomination_status_enum", native_enum=False),
        nullable=False,
        default=NominationStatus.PENDING,
        index=True,
    )

    site_name = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    decided_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    decision_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<ExpertNomination {self.id} user={self.user_id} {self.status}>"


class ExpertNetworkMember(Base):
    __tablename__ = "expert_network_members"
    __table_args__ = (UniqueConstraint("network_id", "user_id", name="uq_expert_network_members_network_user"),)

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    org_id = Column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    network_id = Column(
        String(36),
        ForeignKey("expert_networks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    role = Column(
        Enum(ExpertRole, name="expert_member_role_enum", native_enum=False),
        nullable=False,
        default=ExpertRole.FSME,
    )
    nomination_id = Column(
        String(36),
        ForeignKey("expert_nominations.id", ondelete="SET NULL"),
        nullable=True,
    )
    joined_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    network = relationship("ExpertNetwork", back_populates="members")

    def __repr__(self) -> str:
        return f"<ExpertNetworkMember network={self.network_id} user={self.user_id} {self.role}>"
