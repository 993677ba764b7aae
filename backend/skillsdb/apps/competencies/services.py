from __future__ import annotations

from datetime import date, datetime, timezone
import logging
from typing import Iterable, List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from skillsdb.apps.accounts import models as account_models
from skillsdb.apps.accounts.models import AccountRole
from skillsdb.apps.assessments import models as assessment_models
from skillsdb.apps.audit import services as audit_services
from skillsdb.apps.development import models as development_models
from skillsdb.apps.notifications import models as notification_models
from skillsdb.apps.notifications.service import NotificationTarget, notify
from skillsdb.apps.workflow import apply_transition
from skillsdb.batch import BatchResult
from skillsdb.errors import ConflictError, LifecycleError, PermissionDeniedError, ValidationError, not_found
from skillsdb.utils.identifiers import correlation_id

from . import models, schemas

logger = logging.getLogger(__name__)

ASSIGNER_ROLES = frozenset({AccountRole.SUPERUSER, AccountRole.ORG_ADMIN, AccountRole.MANAGER})

SKIP_ALREADY_ASSIGNED = "already_assigned"
SKIP_UNKNOWN_USER = "unknown_user"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_assigner(actor: account_models.User) -> None:
    if actor.is_superuser or actor.role in ASSIGNER_ROLES:
        return
    raise PermissionDeniedError.single(
        "forbidden", "actor", "Only managers and admins may manage assignments"
    )


def _validate_level(value: int, field_name: str) -> None:
    if value is None or value < models.MIN_LEVEL or value > models.MAX_LEVEL:
        raise ValidationError.single(
            "invalid_level",
            field_name,
            f"{field_name} must be between {models.MIN_LEVEL} and {models.MAX_LEVEL}",
        )


def status_for_levels(current_level: int, target_level: int) -> models.UserCompetencyStatus:
    if current_level >= target_level:
        return models.UserCompetencyStatus.ACHIEVED
    return models.UserCompetencyStatus.IN_PROGRESS


def _snapshot(uc: models.UserCompetency) -> dict:
    return {
        "status": uc.status,
        "current_level": uc.current_level,
        "target_level": uc.target_level,
        "org_id": uc.org_id,
    }


# ---------------------------------------------------------------------------
# CATALOG
# ---------------------------------------------------------------------------


def list_competencies(db: Session, *, org_id: str, active_only: bool = True) -> List[models.Competency]:
    query = db.query(models.Competency).filter(models.Competency.org_id == org_id)
    if active_only:
        query = query.filter(models.Competency.is_active.is_(True))
    return query.order_by(models.Competency.category, models.Competency.name).all()


def get_competency(db: Session, *, org_id: str, competency_id: str) -> models.Competency:
    competency = (
        db.query(models.Competency)
        .filter(models.Competency.org_id == org_id, models.Competency.id == competency_id)
        .first()
    )
    if not competency:
        raise not_found("Competency", competency_id)
    return competency


def create_competency(
    db: Session,
    *,
    actor: account_models.User,
    data: schemas.CompetencyCreate,
) -> models.Competency:
    if not actor.is_admin:
        raise PermissionDeniedError.single("forbidden", "actor", "Only admins may define competencies")
    if not data.name or not data.name.strip():
        raise ValidationError.single("missing_field", "name", "Competency name is required")

    values = data.model_dump()
    for level in range(models.MIN_LEVEL, models.MAX_LEVEL + 1):
        key = f"level_{level}_description"
        if not values.get(key):
            values[key] = models.LEVEL_NAMES[level]

    competency = models.Competency(org_id=actor.org_id, **values)
    db.add(competency)
    db.flush()
    audit_services.log_event(
        db,
        org_id=actor.org_id,
        actor_user_id=actor.id,
        entity_type="competency",
        entity_id=competency.id,
        action="created",
        after={"name": competency.name, "category": competency.category},
    )
    return competency


# ---------------------------------------------------------------------------
# ASSIGNMENTS
# ---------------------------------------------------------------------------


def find_user_competency(db: Session, *, user_id: str, competency_id: str) -> Optional[models.UserCompetency]:
    return (
        db.query(models.UserCompetency)
        .filter(
            models.UserCompetency.user_id == user_id,
            models.UserCompetency.competency_id == competency_id,
        )
        .first()
    )


def get_user_competency(db: Session, *, org_id: str, user_competency_id: str) -> models.UserCompetency:
    uc = (
        db.query(models.UserCompetency)
        .filter(
            models.UserCompetency.org_id == org_id,
            models.UserCompetency.id == user_competency_id,
        )
        .first()
    )
    if not uc:
        raise not_found("UserCompetency", user_competency_id)
    return uc


def list_user_competencies(
    db: Session,
    *,
    org_id: str,
    user_id: Optional[str] = None,
    competency_id: Optional[str] = None,
    status: Optional[models.UserCompetencyStatus] = None,
) -> List[models.UserCompetency]:
    query = db.query(models.UserCompetency).filter(models.UserCompetency.org_id == org_id)
    if user_id:
        query = query.filter(models.UserCompetency.user_id == user_id)
    if competency_id:
        query = query.filter(models.UserCompetency.competency_id == competency_id)
    if status:
        query = query.filter(models.UserCompetency.status == status)
    return query.order_by(models.UserCompetency.created_at.desc()).all()


def _active_user(db: Session, *, org_id: str, user_id: str) -> Optional[account_models.User]:
    return (
        db.query(account_models.User)
        .filter(
            account_models.User.org_id == org_id,
            account_models.User.id == user_id,
            account_models.User.is_active.is_(True),
        )
        .first()
    )


def _create_assignment_records(
    db: Session,
    *,
    actor: account_models.User,
    competency: models.Competency,
    user_id: str,
    target_level: int,
    mode: Union[schemas.NeedsCoaching, schemas.AlreadyCompetent],
    coach_id: Optional[str],
    target_date: Optional[date],
) -> Tuple[models.UserCompetency, development_models.DevelopmentActivity]:
    now = _utcnow()
    current_level = mode.current_level

    uc = models.UserCompetency(
        org_id=actor.org_id,
        user_id=user_id,
        competency_id=competency.id,
        current_level=current_level,
        target_level=target_level,
        status=status_for_levels(current_level, target_level),
        target_date=target_date,
        assigned_by=actor.id,
    )
    db.add(uc)
    db.flush()

    if isinstance(mode, schemas.AlreadyCompetent):
        uc.last_assessment_date = now
        activity = development_models.DevelopmentActivity(
            org_id=actor.org_id,
            activity_type=development_models.ActivityType.VALIDATION_AUDIT,
            trainee_id=user_id,
            coach_id=None,
            assigned_by=actor.id,
            competency_id=competency.id,
            target_level=target_level,
            status=development_models.ActivityStatus.VALIDATED,
            title=f"Validated: {competency.name} level {current_level}",
            description="Recorded as already competent at assignment.",
            validated_at=now,
            validated_by=actor.id,
        )
        db.add(
            assessment_models.Assessment(
                org_id=actor.org_id,
                user_id=user_id,
                competency_id=competency.id,
                user_competency_id=uc.id,
                assessed_by=actor.id,
                assessment_date=now,
                level_achieved=current_level,
                notes="Recorded as already competent at assignment.",
                status=assessment_models.AssessmentStatus.VALIDATED,
            )
        )
    else:
        activity = development_models.DevelopmentActivity(
            org_id=actor.org_id,
            activity_type=development_models.ActivityType.COACHING,
            trainee_id=user_id,
            coach_id=coach_id or competency.owner_id,
            assigned_by=actor.id,
            competency_id=competency.id,
            target_level=target_level,
            status=development_models.ActivityStatus.PENDING,
            title=f"Coaching: {competency.name}",
            objectives=f"Reach level {target_level} ({models.LEVEL_NAMES[target_level]})",
            success_criteria=competency.rubric_for(target_level),
            due_date=target_date,
        )
    db.add(activity)
    db.flush()

    audit_services.log_event(
        db,
        org_id=actor.org_id,
        actor_user_id=actor.id,
        entity_type="user_competency",
        entity_id=uc.id,
        action="assigned",
        after={
            "status": uc.status.value,
            "current_level": uc.current_level,
            "target_level": uc.target_level,
            "activity_id": activity.id,
            "mode": mode.kind,
        },
        correlation_id=correlation_id("user_competency", uc.id, "assigned"),
    )
    return uc, activity


def _notify_assignment(
    db: Session,
    *,
    actor: account_models.User,
    competency: models.Competency,
    uc: models.UserCompetency,
    activity: development_models.DevelopmentActivity,
) -> None:
    payload = {
        "user_competency_id": uc.id,
        "competency_id": competency.id,
        "competency_name": competency.name,
        "activity_id": activity.id,
        "target_level": uc.target_level,
    }
    notify(
        db,
        org_id=actor.org_id,
        target=NotificationTarget.user(uc.user_id),
        type=notification_models.NotificationType.COMPETENCY_ASSIGNED,
        payload=payload,
        body=f"You have been assigned {competency.name} (target level {uc.target_level}).",
        dedupe_key=f"user_competency:{uc.id}:assigned",
        actor_user_id=actor.id,
    )
    if activity.activity_type == development_models.ActivityType.COACHING and activity.coach_id:
        notify(
            db,
            org_id=actor.org_id,
            target=NotificationTarget.user(activity.coach_id),
            type=notification_models.NotificationType.COACHING_ASSIGNED,
            payload={**payload, "trainee_id": uc.user_id},
            dedupe_key=f"activity:{activity.id}:coaching_assigned",
            actor_user_id=actor.id,
        )


def assign_competency(
    db: Session,
    *,
    actor: account_models.User,
    competency_id: str,
    target_level: int,
    user_ids: Iterable[str],
    mode: Union[schemas.NeedsCoaching, schemas.AlreadyCompetent, None] = None,
    coach_id: Optional[str] = None,
    target_date: Optional[date] = None,
) -> BatchResult[models.UserCompetency]:
    """
    Assign a competency to many trainees at once.

    Input problems (no users, unknown competency, bad levels) raise
    ValidationError before anything is written. After that the batch never
    raises: each user is processed in its own savepoint and ends up in
    exactly one of succeeded / skipped / failed.
    """
    _require_assigner(actor)

    user_ids = [uid for uid in (user_ids or []) if uid]
    if not user_ids:
        raise ValidationError.single("missing_field", "user_ids", "At least one user must be selected")
    if not competency_id:
        raise ValidationError.single("missing_field", "competency_id", "A competency must be selected")
    _validate_level(target_level, "target_level")

    if mode is None:
        mode = schemas.NeedsCoaching()

    competency = (
        db.query(models.Competency)
        .filter(
            models.Competency.org_id == actor.org_id,
            models.Competency.id == competency_id,
            models.Competency.is_active.is_(True),
        )
        .first()
    )
    if not competency:
        raise ValidationError.single("unknown_competency", "competency_id", "Competency not found or inactive")

    if coach_id and not _active_user(db, org_id=actor.org_id, user_id=coach_id):
        raise ValidationError.single("unknown_user", "coach_id", "Coach not found in organisation")

    result: BatchResult[models.UserCompetency] = BatchResult()
    for user_id in user_ids:
        skip_reason = None
        try:
            with db.begin_nested():
                if not _active_user(db, org_id=actor.org_id, user_id=user_id):
                    skip_reason = SKIP_UNKNOWN_USER
                # Fast path only; the unique constraint is authoritative.
                elif find_user_competency(db, user_id=user_id, competency_id=competency.id):
                    skip_reason = SKIP_ALREADY_ASSIGNED
                else:
                    uc, activity = _create_assignment_records(
                        db,
                        actor=actor,
                        competency=competency,
                        user_id=user_id,
                        target_level=target_level,
                        mode=mode,
                        coach_id=coach_id,
                        target_date=target_date,
                    )
        except IntegrityError:
            result.add_skip(user_id, SKIP_ALREADY_ASSIGNED)
            continue
        except LifecycleError as exc:
            result.add_failure(user_id, exc.code, exc.message)
            continue
        except SQLAlchemyError as exc:
            logger.exception(
                "Assignment failed",
                extra={"org_id": actor.org_id, "user_id": user_id, "competency_id": competency.id},
            )
            result.add_failure(user_id, "dependency_error", str(exc))
            continue

        if skip_reason:
            result.add_skip(user_id, skip_reason)
            continue
        result.add_success(uc)
        _notify_assignment(db, actor=actor, competency=competency, uc=uc, activity=activity)

    logger.info(
        "Competency assignment batch processed",
        extra={"org_id": actor.org_id, "competency_id": competency.id, **result.summary()},
    )
    return result


def _transition_status(
    db: Session,
    *,
    uc: models.UserCompetency,
    to_status: models.UserCompetencyStatus,
    actor_user_id: Optional[str],
    before: dict,
    after: dict,
    action: str,
) -> None:
    if uc.status == to_status:
        return
    apply_transition(
        db,
        actor_user_id=actor_user_id,
        entity_type="user_competency",
        entity_id=uc.id,
        from_state=uc.status,
        to_state=to_status,
        before_obj=before,
        after_obj=after,
        correlation_id=correlation_id("user_competency", uc.id, action),
    )
    uc.status = to_status


def apply_validated_level(
    db: Session,
    *,
    uc: models.UserCompetency,
    level: int,
    actor: account_models.User,
    assessed_at: Optional[datetime] = None,
) -> models.UserCompetency:
    """
    Write a confirmed level back onto the assignment.

    The only place current_level changes after creation; assessment and
    validation both go through here.
    """
    _validate_level(level, "achieved_level")
    before = _snapshot(uc)
    new_status = status_for_levels(level, uc.target_level)
    after = {**before, "status": new_status, "current_level": level}

    if new_status != uc.status:
        _transition_status(
            db,
            uc=uc,
            to_status=new_status,
            actor_user_id=actor.id,
            before=before,
            after=after,
            action="level",
        )
    else:
        audit_services.log_event(
            db,
            org_id=uc.org_id,
            actor_user_id=actor.id,
            entity_type="user_competency",
            entity_id=uc.id,
            action="level_recorded",
            before={"current_level": before["current_level"]},
            after={"current_level": level},
            correlation_id=correlation_id("user_competency", uc.id, "level"),
        )

    uc.current_level = level
    uc.last_assessment_date = assessed_at or _utcnow()
    db.add(uc)
    db.flush()
    return uc


def update_assignment(
    db: Session,
    *,
    actor: account_models.User,
    user_competency_id: str,
    target_level: Optional[int] = None,
    target_date: Optional[date] = None,
) -> models.UserCompetency:
    _require_assigner(actor)
    uc = get_user_competency(db, org_id=actor.org_id, user_competency_id=user_competency_id)

    if target_date is not None:
        uc.target_date = target_date

    if target_level is not None:
        _validate_level(target_level, "target_level")
        before = _snapshot(uc)
        new_status = status_for_levels(uc.current_level, target_level)
        after = {**before, "status": new_status, "target_level": target_level}
        _transition_status(
            db,
            uc=uc,
            to_status=new_status,
            actor_user_id=actor.id,
            before=before,
            after=after,
            action="retarget",
        )
        uc.target_level = target_level

    db.add(uc)
    db.flush()
    return uc


def remove_assignment(
    db: Session,
    *,
    actor: account_models.User,
    user_competency_id: str,
) -> None:
    """Explicit removal: cancel open coaching for the pair, then delete the row."""
    _require_assigner(actor)
    uc = get_user_competency(db, org_id=actor.org_id, user_competency_id=user_competency_id)

    open_activities = (
        db.query(development_models.DevelopmentActivity)
        .filter(
            development_models.DevelopmentActivity.trainee_id == uc.user_id,
            development_models.DevelopmentActivity.competency_id == uc.competency_id,
            development_models.DevelopmentActivity.status.in_(development_models.OPEN_ACTIVITY_STATUSES),
        )
        .all()
    )
    now = _utcnow()
    for activity in open_activities:
        apply_transition(
            db,
            actor_user_id=actor.id,
            entity_type="development_activity",
            entity_id=activity.id,
            from_state=activity.status,
            to_state=development_models.ActivityStatus.CANCELLED,
            before_obj={"status": activity.status, "org_id": activity.org_id},
            after_obj={"status": "cancelled", "reason": "assignment removed", "org_id": activity.org_id},
            correlation_id=correlation_id("development_activity", activity.id, "cancelled"),
        )
        activity.status = development_models.ActivityStatus.CANCELLED
        activity.cancelled_at = now
        db.add(activity)

    audit_services.log_event(
        db,
        org_id=uc.org_id,
        actor_user_id=actor.id,
        entity_type="user_competency",
        entity_id=uc.id,
        action="removed",
        before=_payload_for_audit(uc),
        critical=True,
    )
    db.delete(uc)
    db.flush()


def _payload_for_audit(uc: models.UserCompetency) -> dict:
    return {
        "user_id": uc.user_id,
        "competency_id": uc.competency_id,
        "status": uc.status.value,
        "current_level": uc.current_level,
        "target_level": uc.target_level,
    }


# ---------------------------------------------------------------------------
# PROFILES
# ---------------------------------------------------------------------------


def list_profiles(db: Session, *, org_id: str, active_only: bool = True) -> List[models.CompetencyProfile]:
    query = db.query(models.CompetencyProfile).filter(models.CompetencyProfile.org_id == org_id)
    if active_only:
        query = query.filter(models.CompetencyProfile.is_active.is_(True))
    return query.order_by(models.CompetencyProfile.name).all()


def get_profile(db: Session, *, org_id: str, profile_id: str) -> models.CompetencyProfile:
    profile = (
        db.query(models.CompetencyProfile)
        .filter(models.CompetencyProfile.org_id == org_id, models.CompetencyProfile.id == profile_id)
        .first()
    )
    if not profile:
        raise not_found("CompetencyProfile", profile_id)
    return profile


def create_profile(
    db: Session,
    *,
    actor: account_models.User,
    data: schemas.CompetencyProfileCreate,
) -> models.CompetencyProfile:
    _require_assigner(actor)
    if not data.name or not data.name.strip():
        raise ValidationError.single("missing_field", "name", "Profile name is required")
    if not data.items:
        raise ValidationError.single("missing_field", "items", "At least one competency is required")

    competency_ids = [item.competency_id for item in data.items]
    if len(set(competency_ids)) != len(competency_ids):
        raise ValidationError.single("duplicate_competency", "items", "A competency may appear only once")

    known = {
        row.id
        for row in db.query(models.Competency.id).filter(
            models.Competency.org_id == actor.org_id,
            models.Competency.id.in_(competency_ids),
            models.Competency.is_active.is_(True),
        )
    }
    missing = [cid for cid in competency_ids if cid not in known]
    if missing:
        raise ValidationError(
            code="unknown_competency",
            detail=[{"field": f"items.{cid}", "reason": "Competency not found or inactive"} for cid in missing],
        )
    if data.owner_id and not _active_user(db, org_id=actor.org_id, user_id=data.owner_id):
        raise ValidationError.single("unknown_user", "owner_id", "Owner not found in organisation")

    profile = models.CompetencyProfile(
        org_id=actor.org_id,
        name=data.name.strip(),
        description=data.description,
        owner_id=data.owner_id,
        created_by=actor.id,
    )
    profile.items = [
        models.ProfileCompetency(
            competency_id=item.competency_id,
            default_target_level=item.default_target_level,
            position=position,
        )
        for position, item in enumerate(data.items)
    ]
    try:
        with db.begin_nested():
            db.add(profile)
            db.flush()
    except IntegrityError:
        raise ConflictError.single("profile_exists", "name", "A profile with this name already exists")

    audit_services.log_event(
        db,
        org_id=actor.org_id,
        actor_user_id=actor.id,
        entity_type="competency_profile",
        entity_id=profile.id,
        action="created",
        after={"name": profile.name, "competency_ids": competency_ids},
    )
    return profile


def _record_profile_assignment(
    db: Session,
    *,
    actor: account_models.User,
    profile: models.CompetencyProfile,
    user_id: str,
    coach_id: Optional[str],
    target_date: Optional[date],
) -> None:
    exists = (
        db.query(models.ProfileAssignment.id)
        .filter(
            models.ProfileAssignment.profile_id == profile.id,
            models.ProfileAssignment.user_id == user_id,
        )
        .first()
    )
    if exists:
        return
    db.add(
        models.ProfileAssignment(
            org_id=actor.org_id,
            profile_id=profile.id,
            user_id=user_id,
            coach_id=coach_id,
            target_date=target_date,
            assigned_by=actor.id,
        )
    )
    db.flush()


def assign_profile(
    db: Session,
    *,
    actor: account_models.User,
    profile_id: str,
    user_ids: Iterable[str],
    coach_id: Optional[str] = None,
    target_date: Optional[date] = None,
) -> BatchResult[models.UserCompetency]:
    """
    Assign every competency in a profile to each user, at the profile's
    default target levels.

    Each competency goes through `assign_competency`, so competencies a user
    already holds are skipped. Batch keys are `<user_id>:<competency_id>`.
    The coach is the explicit `coach_id`, else the profile owner, else each
    competency's owner.
    """
    _require_assigner(actor)
    profile = get_profile(db, org_id=actor.org_id, profile_id=profile_id)
    if not profile.is_active:
        raise ValidationError.single("inactive_profile", "profile_id", "Profile is inactive")

    user_ids = [uid for uid in (user_ids or []) if uid]
    if not user_ids:
        raise ValidationError.single("missing_field", "user_ids", "At least one user must be selected")

    if coach_id:
        if not _active_user(db, org_id=actor.org_id, user_id=coach_id):
            raise ValidationError.single("unknown_user", "coach_id", "Coach not found in organisation")
    elif profile.owner_id and _active_user(db, org_id=actor.org_id, user_id=profile.owner_id):
        coach_id = profile.owner_id

    result: BatchResult[models.UserCompetency] = BatchResult()
    for user_id in user_ids:
        try:
            with db.begin_nested():
                if _active_user(db, org_id=actor.org_id, user_id=user_id):
                    _record_profile_assignment(
                        db,
                        actor=actor,
                        profile=profile,
                        user_id=user_id,
                        coach_id=coach_id,
                        target_date=target_date,
                    )
        except SQLAlchemyError as exc:
            logger.exception(
                "Profile assignment record failed",
                extra={"org_id": actor.org_id, "profile_id": profile.id, "user_id": user_id},
            )
            result.add_failure(f"{user_id}:profile", "dependency_error", str(exc))

    for item in profile.items:
        try:
            part = assign_competency(
                db,
                actor=actor,
                competency_id=item.competency_id,
                target_level=item.default_target_level,
                user_ids=user_ids,
                mode=schemas.NeedsCoaching(),
                coach_id=coach_id,
                target_date=target_date,
            )
        except LifecycleError as exc:
            for user_id in user_ids:
                result.add_failure(f"{user_id}:{item.competency_id}", exc.code, exc.message)
            continue

        for uc in part.succeeded:
            result.add_success(uc)
        for skipped in part.skipped:
            result.add_skip(f"{skipped.key}:{item.competency_id}", skipped.reason)
        for failed in part.failed:
            result.add_failure(f"{failed.key}:{item.competency_id}", failed.code, failed.error)

    audit_services.log_event(
        db,
        org_id=actor.org_id,
        actor_user_id=actor.id,
        entity_type="competency_profile",
        entity_id=profile.id,
        action="assigned",
        after={"user_ids": user_ids, **result.summary()},
    )
    logger.info(
        "Profile assignment batch processed",
        extra={"org_id": actor.org_id, "profile_id": profile.id, **result.summary()},
    )
    return result


# ---------------------------------------------------------------------------
# GAP ANALYSIS
# ---------------------------------------------------------------------------


def gap_band(gap: int) -> str:
    if gap <= 0:
        return "achieved"
    if gap == 1:
        return "behind"
    return "critical"


def gap_analysis(
    db: Session,
    *,
    org_id: str,
    user_ids: Optional[List[str]] = None,
) -> schemas.GapAnalysisRead:
    query = (
        db.query(models.UserCompetency, models.Competency)
        .join(models.Competency, models.Competency.id == models.UserCompetency.competency_id)
        .filter(models.UserCompetency.org_id == org_id)
    )
    if user_ids:
        query = query.filter(models.UserCompetency.user_id.in_(user_ids))

    rows: List[schemas.GapRow] = []
    counts = {"achieved": 0, "behind": 0, "critical": 0}
    for uc, competency in query.order_by(models.UserCompetency.user_id, models.Competency.name).all():
        band = gap_band(uc.gap)
        counts[band] += 1
        rows.append(
            schemas.GapRow(
                user_competency_id=uc.id,
                user_id=uc.user_id,
                competency_id=competency.id,
                competency_name=competency.name,
                current_level=uc.current_level,
                target_level=uc.target_level,
                gap=uc.gap,
                band=band,
            )
        )
    return schemas.GapAnalysisRead(rows=rows, counts=counts)
