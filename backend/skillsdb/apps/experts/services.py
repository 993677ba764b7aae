from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from skillsdb.apps.accounts import models as account_models
from skillsdb.apps.accounts.models import AccountRole
from skillsdb.apps.audit import services as audit_services
from skillsdb.apps.competencies import models as competency_models
from skillsdb.apps.competencies import services as competency_services
from skillsdb.apps.notifications import models as notification_models
from skillsdb.apps.notifications.service import NotificationTarget, notify
from skillsdb.apps.workflow import apply_transition, check_transition
from skillsdb.errors import ConflictError, PermissionDeniedError, ValidationError, not_found
from skillsdb.utils.identifiers import correlation_id

from . import models, schemas

logger = logging.getLogger(__name__)

NOMINATION_MIN_LEVEL = 3
GSME_MIN_LEVEL = 5

REASON_LEVEL_TOO_LOW = "level_below_minimum"
REASON_ALREADY_MEMBER = "already_member"
REASON_NOMINATION_PENDING = "nomination_pending"

_REASON_TEXT = {
    REASON_LEVEL_TOO_LOW: f"Current level must be at least {NOMINATION_MIN_LEVEL}",
    REASON_ALREADY_MEMBER: "User is already a member of this competency's expert network",
    REASON_NOMINATION_PENDING: "A nomination for this user and competency is already pending",
}


class NominationIneligibleError(ConflictError):
    """The nominee does not meet the eligibility rules."""

    @classmethod
    def for_reasons(cls, reasons: List[str]) -> "NominationIneligibleError":
        return cls(
            code="not_eligible",
            detail=[{"field": reason, "reason": _REASON_TEXT[reason]} for reason in reasons],
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_role_for_level(level: int) -> models.ExpertRole:
    if level >= GSME_MIN_LEVEL:
        return models.ExpertRole.GSME
    return models.ExpertRole.FSME


def _require_admin(actor: account_models.User) -> None:
    if not actor.is_admin:
        raise PermissionDeniedError.single("forbidden", "actor", "Only organisation admins may do this")


# ---------------------------------------------------------------------------
# QUERIES
# ---------------------------------------------------------------------------


def find_network(db: Session, *, org_id: str, competency_id: str) -> Optional[models.ExpertNetwork]:
    return (
        db.query(models.ExpertNetwork)
        .filter(
            models.ExpertNetwork.org_id == org_id,
            models.ExpertNetwork.competency_id == competency_id,
        )
        .first()
    )


def list_networks(db: Session, *, org_id: str, active_only: bool = True) -> List[models.ExpertNetwork]:
    query = db.query(models.ExpertNetwork).filter(models.ExpertNetwork.org_id == org_id)
    if active_only:
        query = query.filter(models.ExpertNetwork.is_active.is_(True))
    return query.order_by(models.ExpertNetwork.name).all()


def list_members(db: Session, *, org_id: str, network_id: str) -> List[models.ExpertNetworkMember]:
    network = (
        db.query(models.ExpertNetwork)
        .filter(models.ExpertNetwork.org_id == org_id, models.ExpertNetwork.id == network_id)
        .first()
    )
    if not network:
        raise not_found("ExpertNetwork", network_id)
    return (
        db.query(models.ExpertNetworkMember)
        .filter(models.ExpertNetworkMember.network_id == network.id)
        .order_by(models.ExpertNetworkMember.joined_at)
        .all()
    )


def list_nominations(
    db: Session,
    *,
    org_id: str,
    status: Optional[models.NominationStatus] = None,
    competency_id: Optional[str] = None,
) -> List[models.ExpertNomination]:
    query = db.query(models.ExpertNomination).filter(models.ExpertNomination.org_id == org_id)
    if status:
        query = query.filter(models.ExpertNomination.status == status)
    if competency_id:
        query = query.filter(models.ExpertNomination.competency_id == competency_id)
    return query.order_by(models.ExpertNomination.created_at.desc()).all()


def get_nomination(db: Session, *, org_id: str, nomination_id: str) -> models.ExpertNomination:
    nomination = (
        db.query(models.ExpertNomination)
        .filter(
            models.ExpertNomination.org_id == org_id,
            models.ExpertNomination.id == nomination_id,
        )
        .first()
    )
    if not nomination:
        raise not_found("ExpertNomination", nomination_id)
    return nomination


def _is_member(db: Session, *, network_id: Optional[str], user_id: str) -> bool:
    if not network_id:
        return False
    return (
        db.query(models.ExpertNetworkMember.id)
        .filter(
            models.ExpertNetworkMember.network_id == network_id,
            models.ExpertNetworkMember.user_id == user_id,
        )
        .first()
        is not None
    )


def _has_pending(db: Session, *, user_id: str, competency_id: str) -> bool:
    return (
        db.query(models.ExpertNomination.id)
        .filter(
            models.ExpertNomination.user_id == user_id,
            models.ExpertNomination.competency_id == competency_id,
            models.ExpertNomination.status == models.NominationStatus.PENDING,
        )
        .first()
        is not None
    )


# ---------------------------------------------------------------------------
# ELIGIBILITY & SUBMISSION
# ---------------------------------------------------------------------------


def check_eligibility(
    db: Session,
    *,
    org_id: str,
    user_id: str,
    competency_id: str,
) -> schemas.NominationEligibility:
    uc = competency_services.find_user_competency(db, user_id=user_id, competency_id=competency_id)
    level = uc.current_level if uc and uc.org_id == org_id else 0
    network = find_network(db, org_id=org_id, competency_id=competency_id)

    reasons: List[str] = []
    if level < NOMINATION_MIN_LEVEL:
        reasons.append(REASON_LEVEL_TOO_LOW)
    if network and _is_member(db, network_id=network.id, user_id=user_id):
        reasons.append(REASON_ALREADY_MEMBER)
    if _has_pending(db, user_id=user_id, competency_id=competency_id):
        reasons.append(REASON_NOMINATION_PENDING)

    return schemas.NominationEligibility(
        user_id=user_id,
        competency_id=competency_id,
        eligible=not reasons,
        reasons=reasons,
        current_level=level,
        suggested_role=default_role_for_level(level) if level >= NOMINATION_MIN_LEVEL else None,
        network_id=network.id if network else None,
    )


def submit_nomination(
    db: Session,
    *,
    actor: account_models.User,
    user_id: str,
    competency_id: str,
    proposed_role: Optional[models.ExpertRole] = None,
    site_name: Optional[str] = None,
    notes: Optional[str] = None,
    current_level: Optional[int] = None,
) -> models.ExpertNomination:
    """
    Nominate a trainee for a competency's expert network.

    Eligibility is re-checked here, and the partial unique index on pending
    nominations backs up the pending check under concurrency.
    """
    if actor.role == AccountRole.TRAINEE and not actor.is_superuser:
        raise PermissionDeniedError.single("forbidden", "actor", "Trainees cannot submit nominations")

    competency = (
        db.query(competency_models.Competency)
        .filter(
            competency_models.Competency.org_id == actor.org_id,
            competency_models.Competency.id == competency_id,
        )
        .first()
    )
    if not competency:
        raise ValidationError.single("unknown_competency", "competency_id", "Competency not found")

    nominee = (
        db.query(account_models.User)
        .filter(account_models.User.org_id == actor.org_id, account_models.User.id == user_id)
        .first()
    )
    if not nominee:
        raise ValidationError.single("unknown_user", "user_id", "User not found in organisation")

    eligibility = check_eligibility(db, org_id=actor.org_id, user_id=user_id, competency_id=competency_id)
    if current_level is not None and current_level != eligibility.current_level:
        raise ValidationError.single(
            "level_mismatch",
            "current_level",
            f"Recorded level is {eligibility.current_level}, not {current_level}",
        )
    if not eligibility.eligible:
        raise NominationIneligibleError.for_reasons(eligibility.reasons)

    nomination = models.ExpertNomination(
        org_id=actor.org_id,
        user_id=user_id,
        nominated_by=actor.id,
        competency_id=competency_id,
        network_id=eligibility.network_id,
        current_level=eligibility.current_level,
        proposed_role=proposed_role or default_role_for_level(eligibility.current_level),
        status=models.NominationStatus.PENDING,
        site_name=site_name or nominee.site_name,
        notes=notes,
    )
    try:
        with db.begin_nested():
            db.add(nomination)
            db.flush()
    except IntegrityError:
        raise NominationIneligibleError.for_reasons([REASON_NOMINATION_PENDING])

    audit_services.log_event(
        db,
        org_id=actor.org_id,
        actor_user_id=actor.id,
        entity_type="expert_nomination",
        entity_id=nomination.id,
        action="submitted",
        after={
            "user_id": user_id,
            "competency_id": competency_id,
            "current_level": nomination.current_level,
            "proposed_role": nomination.proposed_role.value,
            "network_id": nomination.network_id,
        },
        correlation_id=correlation_id("expert_nomination", nomination.id, "submitted"),
    )
    notify(
        db,
        org_id=actor.org_id,
        target=NotificationTarget.for_role(AccountRole.ORG_ADMIN),
        type=notification_models.NotificationType.NOMINATION_SUBMITTED,
        payload={
            "nomination_id": nomination.id,
            "user_id": user_id,
            "competency_id": competency_id,
            "proposed_role": nomination.proposed_role.value,
        },
        body=f"{nominee.full_name} was nominated for the {competency.name} expert network.",
        dedupe_key=f"nomination:{nomination.id}:submitted",
        actor_user_id=actor.id,
    )
    return nomination


# ---------------------------------------------------------------------------
# NETWORKS
# ---------------------------------------------------------------------------


def create_network(
    db: Session,
    *,
    actor: account_models.User,
    competency_id: str,
    name: str,
    description: Optional[str] = None,
) -> models.ExpertNetwork:
    _require_admin(actor)
    if not name or not name.strip():
        raise ValidationError.single("missing_field", "name", "Network name is required")
    competency_services.get_competency(db, org_id=actor.org_id, competency_id=competency_id)

    if find_network(db, org_id=actor.org_id, competency_id=competency_id):
        raise ConflictError.single("network_exists", "competency_id", "This competency already has a network")

    network = models.ExpertNetwork(
        org_id=actor.org_id,
        competency_id=competency_id,
        name=name.strip(),
        description=description,
        created_by=actor.id,
    )
    try:
        with db.begin_nested():
            db.add(network)
            db.flush()
    except IntegrityError:
        raise ConflictError.single("network_exists", "competency_id", "This competency already has a network")

    attached = (
        db.query(models.ExpertNomination)
        .filter(
            models.ExpertNomination.org_id == actor.org_id,
            models.ExpertNomination.competency_id == competency_id,
            models.ExpertNomination.status == models.NominationStatus.PENDING,
            models.ExpertNomination.network_id.is_(None),
        )
        .all()
    )
    for nomination in attached:
        nomination.network_id = network.id
        db.add(nomination)
    db.flush()

    audit_services.log_event(
        db,
        org_id=actor.org_id,
        actor_user_id=actor.id,
        entity_type="expert_network",
        entity_id=network.id,
        action="created",
        after={
            "competency_id": competency_id,
            "name": network.name,
            "attached_nomination_ids": [nomination.id for nomination in attached],
        },
    )
    return network


# ---------------------------------------------------------------------------
# DECISIONS
# ---------------------------------------------------------------------------


def _decide(
    db: Session,
    *,
    actor: account_models.User,
    nomination: models.ExpertNomination,
    to_status: models.NominationStatus,
    notes: Optional[str],
) -> None:
    now = _utcnow()
    apply_transition(
        db,
        actor_user_id=actor.id,
        entity_type="expert_nomination",
        entity_id=nomination.id,
        from_state=nomination.status,
        to_state=to_status,
        before_obj={"status": nomination.status, "org_id": nomination.org_id},
        after_obj={
            "status": to_status,
            "decided_by": actor.id,
            "decided_at": now.isoformat(),
            "network_id": nomination.network_id,
            "org_id": nomination.org_id,
        },
        correlation_id=correlation_id("expert_nomination", nomination.id, to_status.value),
    )
    nomination.status = to_status
    nomination.decided_by = actor.id
    nomination.decided_at = now
    nomination.decision_notes = notes
    db.add(nomination)
    db.flush()


def _ensure_member(
    db: Session,
    *,
    nomination: models.ExpertNomination,
) -> models.ExpertNetworkMember:
    existing = (
        db.query(models.ExpertNetworkMember)
        .filter(
            models.ExpertNetworkMember.network_id == nomination.network_id,
            models.ExpertNetworkMember.user_id == nomination.user_id,
        )
        .first()
    )
    if existing:
        return existing

    member = models.ExpertNetworkMember(
        org_id=nomination.org_id,
        network_id=nomination.network_id,
        user_id=nomination.user_id,
        role=nomination.proposed_role,
        nomination_id=nomination.id,
    )
    try:
        with db.begin_nested():
            db.add(member)
            db.flush()
    except IntegrityError:
        return (
            db.query(models.ExpertNetworkMember)
            .filter(
                models.ExpertNetworkMember.network_id == nomination.network_id,
                models.ExpertNetworkMember.user_id == nomination.user_id,
            )
            .one()
        )
    return member


def approve_nomination(
    db: Session,
    *,
    actor: account_models.User,
    nomination_id: str,
    notes: Optional[str] = None,
) -> models.ExpertNomination:
    """pending -> approved; the nominee joins the competency's network."""
    _require_admin(actor)
    nomination = get_nomination(db, org_id=actor.org_id, nomination_id=nomination_id)
    check_transition("expert_nomination", nomination.status, models.NominationStatus.APPROVED)

    if not nomination.network_id:
        network = find_network(db, org_id=nomination.org_id, competency_id=nomination.competency_id)
        if not network:
            raise ConflictError.single(
                "network_required",
                "network_id",
                "Create the expert network for this competency before approving",
            )
        nomination.network_id = network.id

    _decide(db, actor=actor, nomination=nomination, to_status=models.NominationStatus.APPROVED, notes=notes)
    member = _ensure_member(db, nomination=nomination)

    notify(
        db,
        org_id=nomination.org_id,
        target=NotificationTarget.user(nomination.user_id),
        type=notification_models.NotificationType.NOMINATION_APPROVED,
        payload={
            "nomination_id": nomination.id,
            "network_id": nomination.network_id,
            "member_id": member.id,
            "role": nomination.proposed_role.value,
        },
        dedupe_key=f"nomination:{nomination.id}:approved",
        actor_user_id=actor.id,
    )
    return nomination


def reject_nomination(
    db: Session,
    *,
    actor: account_models.User,
    nomination_id: str,
    notes: Optional[str] = None,
) -> models.ExpertNomination:
    """pending -> rejected; membership is untouched."""
    _require_admin(actor)
    nomination = get_nomination(db, org_id=actor.org_id, nomination_id=nomination_id)
    _decide(db, actor=actor, nomination=nomination, to_status=models.NominationStatus.REJECTED, notes=notes)

    notify(
        db,
        org_id=nomination.org_id,
        target=NotificationTarget.user(nomination.user_id),
        type=notification_models.NotificationType.NOMINATION_REJECTED,
        payload={"nomination_id": nomination.id, "notes": notes},
        dedupe_key=f"nomination:{nomination.id}:rejected",
        actor_user_id=actor.id,
    )
    return nomination


def remove_member(
    db: Session,
    *,
    actor: account_models.User,
    network_id: str,
    member_id: str,
) -> None:
    """Drop a member from a network. The user may be nominated again afterwards."""
    _require_admin(actor)
    member = (
        db.query(models.ExpertNetworkMember)
        .filter(
            models.ExpertNetworkMember.org_id == actor.org_id,
            models.ExpertNetworkMember.network_id == network_id,
            models.ExpertNetworkMember.id == member_id,
        )
        .first()
    )
    if not member:
        raise not_found("ExpertNetworkMember", member_id)

    audit_services.log_event(
        db,
        org_id=member.org_id,
        actor_user_id=actor.id,
        entity_type="expert_network_member",
        entity_id=member.id,
        action="removed",
        before={"network_id": member.network_id, "user_id": member.user_id, "role": member.role.value},
        critical=True,
    )
    db.delete(member)
    db.flush()
    logger.info(
        "Expert network member removed",
        extra={"org_id": actor.org_id, "network_id": network_id, "user_id": member.user_id},
    )
