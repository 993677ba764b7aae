from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from skillsdb.apps.accounts import models as account_models
from skillsdb.apps.audit import services as audit_services
from skillsdb.apps.competencies import models as competency_models
from skillsdb.apps.competencies import services as competency_services
from skillsdb.apps.development import models as development_models
from skillsdb.apps.development import services as development_services
from skillsdb.apps.notifications import models as notification_models
from skillsdb.apps.notifications.service import NotificationTarget, notify
from skillsdb.batch import BatchResult
from skillsdb.errors import LifecycleError, ValidationError
from skillsdb.utils.identifiers import correlation_id

from . import models, schemas
from .engine import CriteriaResults, compute_achieved_level, normalise_criteria

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def list_assessments(
    db: Session,
    *,
    org_id: str,
    user_id: Optional[str] = None,
    competency_id: Optional[str] = None,
) -> List[models.Assessment]:
    query = db.query(models.Assessment).filter(models.Assessment.org_id == org_id)
    if user_id:
        query = query.filter(models.Assessment.user_id == user_id)
    if competency_id:
        query = query.filter(models.Assessment.competency_id == competency_id)
    return query.order_by(models.Assessment.assessment_date.desc()).all()


def assess(
    db: Session,
    *,
    actor: account_models.User,
    user_competency_id: str,
    criteria_results: Optional[CriteriaResults],
    notes: Optional[str] = None,
) -> models.Assessment:
    """
    Score one competency, record the Assessment, write the level back and
    validate any coaching activity for the pair that is waiting on review.
    """
    uc = competency_services.get_user_competency(
        db, org_id=actor.org_id, user_competency_id=user_competency_id
    )
    development_services.ensure_can_confirm_level(
        db, actor=actor, trainee_id=uc.user_id, competency_id=uc.competency_id
    )

    achieved = compute_achieved_level(criteria_results, uc.target_level)
    now = _utcnow()

    assessment = models.Assessment(
        org_id=uc.org_id,
        user_id=uc.user_id,
        competency_id=uc.competency_id,
        user_competency_id=uc.id,
        assessed_by=actor.id,
        assessment_date=now,
        level_achieved=achieved,
        criteria_results={str(level): value for level, value in normalise_criteria(criteria_results).items()},
        notes=notes,
        status=models.AssessmentStatus.VALIDATED,
    )
    db.add(assessment)
    db.flush()

    competency_services.apply_validated_level(db, uc=uc, level=achieved, actor=actor, assessed_at=now)
    closed = development_services.close_completed_coaching(
        db,
        actor=actor,
        trainee_id=uc.user_id,
        competency_id=uc.competency_id,
        validated_at=now,
    )

    audit_services.log_event(
        db,
        org_id=uc.org_id,
        actor_user_id=actor.id,
        entity_type="assessment",
        entity_id=assessment.id,
        action="assessed",
        after={
            "user_competency_id": uc.id,
            "level_achieved": achieved,
            "validated_activity_ids": [activity.id for activity in closed],
        },
        correlation_id=correlation_id("user_competency", uc.id, "assessed"),
    )
    return assessment


def assess_batch(
    db: Session,
    *,
    actor: account_models.User,
    items: Iterable[schemas.AssessmentItem],
) -> BatchResult[models.Assessment]:
    """Each competency is assessed in its own savepoint; one failure never undoes the others."""
    result: BatchResult[models.Assessment] = BatchResult()
    for item in items:
        try:
            with db.begin_nested():
                assessment = assess(
                    db,
                    actor=actor,
                    user_competency_id=item.user_competency_id,
                    criteria_results=item.criteria_results,
                    notes=item.notes,
                )
        except LifecycleError as exc:
            result.add_failure(item.user_competency_id, exc.code, exc.message)
            continue
        except SQLAlchemyError as exc:
            logger.exception(
                "Assessment failed",
                extra={"org_id": actor.org_id, "user_competency_id": item.user_competency_id},
            )
            result.add_failure(item.user_competency_id, "dependency_error", str(exc))
            continue
        result.add_success(assessment)

    logger.info("Assessment batch processed", extra={"org_id": actor.org_id, **result.summary()})
    return result


def record_validation(
    db: Session,
    *,
    actor: account_models.User,
    user_competency_id: str,
    achieved_level: int,
    notes: Optional[str] = None,
) -> development_models.DevelopmentActivity:
    """
    Confirm a level directly. Always appends a validation-audit activity,
    even when the level is unchanged.
    """
    if achieved_level is None or not (
        competency_models.MIN_LEVEL <= achieved_level <= competency_models.MAX_LEVEL
    ):
        raise ValidationError.single("invalid_level", "achieved_level", "achieved_level must be between 1 and 5")

    uc = competency_services.get_user_competency(
        db, org_id=actor.org_id, user_competency_id=user_competency_id
    )
    development_services.ensure_can_confirm_level(
        db, actor=actor, trainee_id=uc.user_id, competency_id=uc.competency_id
    )

    now = _utcnow()
    competency_services.apply_validated_level(db, uc=uc, level=achieved_level, actor=actor, assessed_at=now)

    activity = development_models.DevelopmentActivity(
        org_id=uc.org_id,
        activity_type=development_models.ActivityType.VALIDATION_AUDIT,
        trainee_id=uc.user_id,
        coach_id=None,
        assigned_by=actor.id,
        competency_id=uc.competency_id,
        target_level=uc.target_level,
        status=development_models.ActivityStatus.VALIDATED,
        title=f"Validated: level {achieved_level}",
        description=notes,
        validated_at=now,
        validated_by=actor.id,
    )
    db.add(activity)
    db.flush()

    notify(
        db,
        org_id=uc.org_id,
        target=NotificationTarget.user(uc.user_id),
        type=notification_models.NotificationType.ACTIVITY_VALIDATED,
        payload={"activity_id": activity.id, "competency_id": uc.competency_id, "level": achieved_level},
        dedupe_key=f"activity:{activity.id}:validated",
        actor_user_id=actor.id,
    )
    return activity
