from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from skillsdb.apps.accounts import models as account_models
from skillsdb.apps.accounts.models import AccountRole
from skillsdb.apps.competencies import models as competency_models
from skillsdb.apps.competencies import services as competency_services
from skillsdb.apps.notifications import models as notification_models
from skillsdb.apps.notifications.service import NotificationTarget, notify
from skillsdb.apps.workflow import apply_transition
from skillsdb.errors import ConflictError, PermissionDeniedError, ValidationError, not_found
from skillsdb.utils.identifiers import correlation_id

from . import models

logger = logging.getLogger(__name__)

CANCELLER_ROLES = frozenset({AccountRole.SUPERUSER, AccountRole.ORG_ADMIN, AccountRole.MANAGER})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _forbidden(reason: str) -> PermissionDeniedError:
    return PermissionDeniedError.single("forbidden", "actor", reason)


# ---------------------------------------------------------------------------
# QUERIES
# ---------------------------------------------------------------------------


def get_activity(db: Session, *, org_id: str, activity_id: str) -> models.DevelopmentActivity:
    activity = (
        db.query(models.DevelopmentActivity)
        .filter(
            models.DevelopmentActivity.org_id == org_id,
            models.DevelopmentActivity.id == activity_id,
        )
        .first()
    )
    if not activity:
        raise not_found("DevelopmentActivity", activity_id)
    return activity


def list_activities(
    db: Session,
    *,
    org_id: str,
    trainee_id: Optional[str] = None,
    coach_id: Optional[str] = None,
    competency_id: Optional[str] = None,
    status: Optional[models.ActivityStatus] = None,
    activity_type: Optional[models.ActivityType] = None,
) -> List[models.DevelopmentActivity]:
    query = db.query(models.DevelopmentActivity).filter(models.DevelopmentActivity.org_id == org_id)
    if trainee_id:
        query = query.filter(models.DevelopmentActivity.trainee_id == trainee_id)
    if coach_id:
        query = query.filter(models.DevelopmentActivity.coach_id == coach_id)
    if competency_id:
        query = query.filter(models.DevelopmentActivity.competency_id == competency_id)
    if status:
        query = query.filter(models.DevelopmentActivity.status == status)
    if activity_type:
        query = query.filter(models.DevelopmentActivity.activity_type == activity_type)
    return query.order_by(models.DevelopmentActivity.created_at.desc()).all()


def list_feedback(db: Session, *, org_id: str, activity_id: str) -> List[models.ActivityFeedback]:
    get_activity(db, org_id=org_id, activity_id=activity_id)
    return (
        db.query(models.ActivityFeedback)
        .filter(models.ActivityFeedback.activity_id == activity_id)
        .order_by(models.ActivityFeedback.created_at.desc())
        .all()
    )


# ---------------------------------------------------------------------------
# AUTHORISATION
# ---------------------------------------------------------------------------


def _is_admin_or_manager(actor: account_models.User) -> bool:
    return bool(actor.is_superuser) or actor.role in CANCELLER_ROLES


def author_role_for(actor: account_models.User, activity: models.DevelopmentActivity) -> models.AuthorRole:
    if activity.coach_id and actor.id == activity.coach_id:
        return models.AuthorRole.COACH
    if actor.id == activity.trainee_id:
        return models.AuthorRole.COACHEE
    return models.AuthorRole.OTHER


def is_coach_for_pair(db: Session, *, actor_id: str, trainee_id: str, competency_id: str) -> bool:
    return (
        db.query(models.DevelopmentActivity.id)
        .filter(
            models.DevelopmentActivity.trainee_id == trainee_id,
            models.DevelopmentActivity.competency_id == competency_id,
            models.DevelopmentActivity.coach_id == actor_id,
        )
        .first()
        is not None
    )


def ensure_can_confirm_level(
    db: Session,
    *,
    actor: account_models.User,
    trainee_id: str,
    competency_id: str,
) -> None:
    """A trainee never confirms their own level; validators and the pair's coach may."""
    if actor.id == trainee_id:
        raise _forbidden("Trainees cannot validate their own competency")
    if actor.can_validate:
        return
    if is_coach_for_pair(db, actor_id=actor.id, trainee_id=trainee_id, competency_id=competency_id):
        return
    raise _forbidden("Only the coach or an assessor may confirm a level")


# ---------------------------------------------------------------------------
# TRANSITIONS
# ---------------------------------------------------------------------------


def _snapshot(activity: models.DevelopmentActivity) -> dict:
    return {"status": activity.status, "org_id": activity.org_id}


def _transition(
    db: Session,
    *,
    activity: models.DevelopmentActivity,
    to_status: models.ActivityStatus,
    actor: account_models.User,
    changes: Optional[dict] = None,
) -> None:
    """Run the registry check and guards against the proposed `changes`, then apply them."""
    changes = changes or {}
    after = {**_snapshot(activity), **changes, "status": to_status}
    apply_transition(
        db,
        actor_user_id=actor.id,
        entity_type="development_activity",
        entity_id=activity.id,
        from_state=activity.status,
        to_state=to_status,
        before_obj=_snapshot(activity),
        after_obj={
            key: (value.isoformat() if isinstance(value, datetime) else value) for key, value in after.items()
        },
        correlation_id=correlation_id("development_activity", activity.id, to_status.value),
    )
    for key, value in changes.items():
        setattr(activity, key, value)
    activity.status = to_status
    db.add(activity)
    db.flush()


def _append_feedback(
    db: Session,
    *,
    activity: models.DevelopmentActivity,
    actor: account_models.User,
    content: str,
    feedback_type: models.FeedbackType,
) -> models.ActivityFeedback:
    entry = models.ActivityFeedback(
        org_id=activity.org_id,
        activity_id=activity.id,
        author_id=actor.id,
        author_role=author_role_for(actor, activity),
        feedback_type=feedback_type,
        content=content,
    )
    db.add(entry)
    db.flush()
    return entry


def start_activity(
    db: Session,
    *,
    actor: account_models.User,
    activity_id: str,
) -> models.DevelopmentActivity:
    activity = get_activity(db, org_id=actor.org_id, activity_id=activity_id)
    if actor.id not in {activity.trainee_id, activity.coach_id}:
        raise _forbidden("Only the trainee or coach may start this activity")
    _transition(db, activity=activity, to_status=models.ActivityStatus.IN_PROGRESS, actor=actor)
    return activity


def mark_ready(
    db: Session,
    *,
    actor: account_models.User,
    activity_id: str,
    note: Optional[str] = None,
) -> models.DevelopmentActivity:
    """Trainee marks the activity ready for review: pending/in_progress -> completed."""
    activity = get_activity(db, org_id=actor.org_id, activity_id=activity_id)
    if actor.id != activity.trainee_id:
        raise _forbidden("Only the trainee may mark an activity ready for review")

    _transition(
        db,
        activity=activity,
        to_status=models.ActivityStatus.COMPLETED,
        actor=actor,
        changes={"completed_at": _utcnow()},
    )
    _append_feedback(
        db,
        activity=activity,
        actor=actor,
        content=(note or "").strip() or "Marked ready for review.",
        feedback_type=models.FeedbackType.MILESTONE,
    )

    target = (
        NotificationTarget.user(activity.coach_id)
        if activity.coach_id
        else NotificationTarget.for_role(AccountRole.ASSESSOR)
    )
    notify(
        db,
        org_id=activity.org_id,
        target=target,
        type=notification_models.NotificationType.VALIDATION_REQUIRED,
        payload={
            "activity_id": activity.id,
            "trainee_id": activity.trainee_id,
            "competency_id": activity.competency_id,
        },
        dedupe_key=f"activity:{activity.id}:validation_required:{activity.completed_at.isoformat()}",
        actor_user_id=actor.id,
    )
    return activity


def mark_validated(
    db: Session,
    *,
    activity: models.DevelopmentActivity,
    actor: account_models.User,
    validated_at: Optional[datetime] = None,
) -> models.DevelopmentActivity:
    """completed -> validated without writing a level back (the caller does that)."""
    _transition(
        db,
        activity=activity,
        to_status=models.ActivityStatus.VALIDATED,
        actor=actor,
        changes={"validated_at": validated_at or _utcnow(), "validated_by": actor.id},
    )
    return activity


def close_completed_coaching(
    db: Session,
    *,
    actor: account_models.User,
    trainee_id: str,
    competency_id: str,
    validated_at: Optional[datetime] = None,
) -> List[models.DevelopmentActivity]:
    completed = (
        db.query(models.DevelopmentActivity)
        .filter(
            models.DevelopmentActivity.org_id == actor.org_id,
            models.DevelopmentActivity.trainee_id == trainee_id,
            models.DevelopmentActivity.competency_id == competency_id,
            models.DevelopmentActivity.activity_type == models.ActivityType.COACHING,
            models.DevelopmentActivity.status == models.ActivityStatus.COMPLETED,
        )
        .all()
    )
    for activity in completed:
        mark_validated(db, activity=activity, actor=actor, validated_at=validated_at)
    return completed


def _ensure_assignment(
    db: Session,
    *,
    activity: models.DevelopmentActivity,
) -> competency_models.UserCompetency:
    uc = competency_services.find_user_competency(
        db, user_id=activity.trainee_id, competency_id=activity.competency_id
    )
    if uc:
        return uc
    logger.info(
        "Creating missing assignment during validation",
        extra={"org_id": activity.org_id, "activity_id": activity.id},
    )
    uc = competency_models.UserCompetency(
        org_id=activity.org_id,
        user_id=activity.trainee_id,
        competency_id=activity.competency_id,
        current_level=0,
        target_level=activity.target_level,
        status=competency_models.UserCompetencyStatus.NOT_STARTED,
        assigned_by=activity.assigned_by,
    )
    db.add(uc)
    db.flush()
    return uc


def validate_activity(
    db: Session,
    *,
    actor: account_models.User,
    activity_id: str,
    achieved_level: Optional[int] = None,
    notes: Optional[str] = None,
) -> models.DevelopmentActivity:
    """
    Coach/assessor confirms a completed activity: completed -> validated, and
    the confirmed level is written back to the trainee's assignment.

    Without an explicit level the activity's target is used, but never below
    what the assignment already records.
    """
    activity = get_activity(db, org_id=actor.org_id, activity_id=activity_id)
    ensure_can_confirm_level(
        db, actor=actor, trainee_id=activity.trainee_id, competency_id=activity.competency_id
    )

    if achieved_level is not None and (
        achieved_level < competency_models.MIN_LEVEL or achieved_level > competency_models.MAX_LEVEL
    ):
        raise ValidationError.single("invalid_level", "achieved_level", "achieved_level must be between 1 and 5")

    now = _utcnow()
    mark_validated(db, activity=activity, actor=actor, validated_at=now)

    uc = _ensure_assignment(db, activity=activity)
    if achieved_level is not None:
        level = achieved_level
    else:
        level = max(activity.target_level, uc.current_level)
    competency_services.apply_validated_level(db, uc=uc, level=level, actor=actor, assessed_at=now)

    content = f"Validated at level {level}."
    if notes and notes.strip():
        content = f"{content} {notes.strip()}"
    _append_feedback(
        db,
        activity=activity,
        actor=actor,
        content=content,
        feedback_type=models.FeedbackType.MILESTONE,
    )

    notify(
        db,
        org_id=activity.org_id,
        target=NotificationTarget.user(activity.trainee_id),
        type=notification_models.NotificationType.ACTIVITY_VALIDATED,
        payload={"activity_id": activity.id, "competency_id": activity.competency_id, "level": level},
        dedupe_key=f"activity:{activity.id}:validated",
        actor_user_id=actor.id,
    )
    return activity


def cancel_activity(
    db: Session,
    *,
    actor: account_models.User,
    activity_id: str,
    reason: Optional[str] = None,
) -> models.DevelopmentActivity:
    activity = get_activity(db, org_id=actor.org_id, activity_id=activity_id)
    if actor.id not in {activity.coach_id, activity.assigned_by} and not _is_admin_or_manager(actor):
        raise _forbidden("Only the coach, assigner or an admin may cancel this activity")

    _transition(
        db,
        activity=activity,
        to_status=models.ActivityStatus.CANCELLED,
        actor=actor,
        changes={"cancelled_at": _utcnow()},
    )
    if reason and reason.strip():
        _append_feedback(
            db,
            activity=activity,
            actor=actor,
            content=f"Cancelled: {reason.strip()}",
            feedback_type=models.FeedbackType.MILESTONE,
        )

    notify(
        db,
        org_id=activity.org_id,
        target=NotificationTarget.user(activity.trainee_id),
        type=notification_models.NotificationType.ACTIVITY_CANCELLED,
        payload={"activity_id": activity.id, "reason": reason},
        dedupe_key=f"activity:{activity.id}:cancelled",
        actor_user_id=actor.id,
    )
    return activity


def add_feedback(
    db: Session,
    *,
    actor: account_models.User,
    activity_id: str,
    content: str,
    feedback_type: models.FeedbackType = models.FeedbackType.PROGRESS,
) -> models.ActivityFeedback:
    activity = get_activity(db, org_id=actor.org_id, activity_id=activity_id)

    if not content or not content.strip():
        raise ValidationError.single("missing_field", "content", "Feedback content is required")
    if actor.id not in {activity.trainee_id, activity.coach_id} and not _is_admin_or_manager(actor):
        raise _forbidden("Only participants may comment on this activity")
    if activity.is_terminal:
        raise ConflictError.single(
            "activity_closed",
            "status",
            f"Feedback is closed on a {activity.status.value} activity",
        )

    return _append_feedback(
        db,
        activity=activity,
        actor=actor,
        content=content.strip(),
        feedback_type=feedback_type,
    )
