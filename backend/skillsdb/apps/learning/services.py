from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from skillsdb.apps.accounts import models as account_models
from skillsdb.apps.accounts.models import AccountRole
from skillsdb.apps.audit import services as audit_services
from skillsdb.apps.competencies import services as competency_services
from skillsdb.apps.notifications import models as notification_models
from skillsdb.apps.notifications.service import NotificationTarget, notify
from skillsdb.apps.workflow import apply_transition
from skillsdb.errors import PermissionDeniedError, ValidationError, not_found
from skillsdb.utils.identifiers import correlation_id

from . import models

logger = logging.getLogger(__name__)

REVIEWER_ROLES = (AccountRole.ORG_ADMIN, AccountRole.MANAGER)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_reviewer(actor: account_models.User) -> bool:
    return actor.is_admin or actor.role in REVIEWER_ROLES


def get_module(db: Session, *, org_id: str, module_id: str) -> models.TrainingModule:
    module = (
        db.query(models.TrainingModule)
        .filter(models.TrainingModule.org_id == org_id, models.TrainingModule.id == module_id)
        .first()
    )
    if not module:
        raise not_found("TrainingModule", module_id)
    return module


def list_modules(
    db: Session,
    *,
    org_id: str,
    status: Optional[models.ModuleStatus] = None,
) -> List[models.TrainingModule]:
    query = db.query(models.TrainingModule).filter(models.TrainingModule.org_id == org_id)
    if status:
        query = query.filter(models.TrainingModule.status == status)
    return query.order_by(models.TrainingModule.updated_at.desc()).all()


def create_module(
    db: Session,
    *,
    actor: account_models.User,
    title: str,
    description: Optional[str] = None,
    content: Optional[str] = None,
    competency_id: Optional[str] = None,
) -> models.TrainingModule:
    if not title or not title.strip():
        raise ValidationError.single("missing_field", "title", "Module title is required")
    if competency_id:
        competency_services.get_competency(db, org_id=actor.org_id, competency_id=competency_id)

    module = models.TrainingModule(
        org_id=actor.org_id,
        title=title.strip(),
        description=description,
        content=content,
        competency_id=competency_id,
        status=models.ModuleStatus.DRAFT,
        created_by=actor.id,
    )
    db.add(module)
    db.flush()
    audit_services.log_event(
        db,
        org_id=actor.org_id,
        actor_user_id=actor.id,
        entity_type="training_module",
        entity_id=module.id,
        action="created",
        after={"title": module.title, "competency_id": competency_id},
    )
    return module


def _transition(
    db: Session,
    *,
    module: models.TrainingModule,
    to_status: models.ModuleStatus,
    actor: account_models.User,
    changes: dict,
) -> None:
    after = {"status": to_status, "org_id": module.org_id}
    after.update(
        {key: (value.isoformat() if isinstance(value, datetime) else value) for key, value in changes.items()}
    )
    apply_transition(
        db,
        actor_user_id=actor.id,
        entity_type="training_module",
        entity_id=module.id,
        from_state=module.status,
        to_state=to_status,
        before_obj={"status": module.status, "org_id": module.org_id},
        after_obj=after,
        correlation_id=correlation_id("training_module", module.id, to_status.value),
    )
    for key, value in changes.items():
        setattr(module, key, value)
    module.status = to_status
    db.add(module)
    db.flush()


def submit_module(
    db: Session,
    *,
    actor: account_models.User,
    module_id: str,
) -> models.TrainingModule:
    """draft/returned -> submitted, then ask reviewers to look at it."""
    module = get_module(db, org_id=actor.org_id, module_id=module_id)
    if actor.id != module.created_by and not _is_reviewer(actor):
        raise PermissionDeniedError.single("forbidden", "actor", "Only the author may submit this module")

    now = _utcnow()
    _transition(
        db,
        module=module,
        to_status=models.ModuleStatus.SUBMITTED,
        actor=actor,
        changes={"submitted_by": actor.id, "submitted_at": now},
    )

    for role in REVIEWER_ROLES:
        notify(
            db,
            org_id=module.org_id,
            target=NotificationTarget.for_role(role),
            type=notification_models.NotificationType.MODULE_SUBMITTED,
            payload={"module_id": module.id, "title": module.title},
            link_path=f"/learning/modules/{module.id}",
            dedupe_key=f"module:{module.id}:submitted:{now.isoformat()}",
            actor_user_id=actor.id,
        )
    return module


def _notify_author(
    db: Session,
    *,
    module: models.TrainingModule,
    actor: account_models.User,
    type: notification_models.NotificationType,
) -> None:
    author_id = module.submitted_by or module.created_by
    if not author_id:
        return
    notify(
        db,
        org_id=module.org_id,
        target=NotificationTarget.user(author_id),
        type=type,
        payload={"module_id": module.id, "title": module.title, "notes": module.review_notes},
        link_path=f"/learning/modules/{module.id}",
        dedupe_key=f"module:{module.id}:{type.value}:{module.reviewed_at.isoformat()}",
        actor_user_id=actor.id,
    )


def approve_module(
    db: Session,
    *,
    reviewer: account_models.User,
    module_id: str,
    notes: Optional[str] = None,
) -> models.TrainingModule:
    if not _is_reviewer(reviewer):
        raise PermissionDeniedError.single("forbidden", "reviewer", "Only reviewers may publish modules")
    module = get_module(db, org_id=reviewer.org_id, module_id=module_id)

    _transition(
        db,
        module=module,
        to_status=models.ModuleStatus.PUBLISHED,
        actor=reviewer,
        changes={"reviewed_by": reviewer.id, "reviewed_at": _utcnow(), "review_notes": notes},
    )
    _notify_author(db, module=module, actor=reviewer, type=notification_models.NotificationType.MODULE_PUBLISHED)
    return module


def reject_module(
    db: Session,
    *,
    reviewer: account_models.User,
    module_id: str,
    notes: Optional[str],
) -> models.TrainingModule:
    """submitted -> returned. Notes are mandatory so the author knows what to fix."""
    if not notes or not notes.strip():
        raise ValidationError.single("missing_field", "notes", "rejection requires notes")
    if not _is_reviewer(reviewer):
        raise PermissionDeniedError.single("forbidden", "reviewer", "Only reviewers may return modules")
    module = get_module(db, org_id=reviewer.org_id, module_id=module_id)

    _transition(
        db,
        module=module,
        to_status=models.ModuleStatus.RETURNED,
        actor=reviewer,
        changes={"reviewed_by": reviewer.id, "reviewed_at": _utcnow(), "review_notes": notes.strip()},
    )
    _notify_author(db, module=module, actor=reviewer, type=notification_models.NotificationType.MODULE_RETURNED)
    return module
