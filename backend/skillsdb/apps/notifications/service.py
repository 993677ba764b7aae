from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from skillsdb.apps.accounts import models as account_models
from skillsdb.errors import DependencyError, ValidationError, not_found

from . import models

logger = logging.getLogger(__name__)


DEFAULT_TITLES: Dict[models.NotificationType, str] = {
    models.NotificationType.COMPETENCY_ASSIGNED: "New competency assigned",
    models.NotificationType.COACHING_ASSIGNED: "New coaching engagement",
    models.NotificationType.VALIDATION_REQUIRED: "Activity ready for validation",
    models.NotificationType.ACTIVITY_VALIDATED: "Competency level validated",
    models.NotificationType.ACTIVITY_CANCELLED: "Coaching activity cancelled",
    models.NotificationType.NOMINATION_SUBMITTED: "Expert nomination submitted",
    models.NotificationType.NOMINATION_APPROVED: "Expert nomination approved",
    models.NotificationType.NOMINATION_REJECTED: "Expert nomination rejected",
    models.NotificationType.MODULE_SUBMITTED: "Training module awaiting review",
    models.NotificationType.MODULE_PUBLISHED: "Training module published",
    models.NotificationType.MODULE_RETURNED: "Training module returned",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class NotificationTarget:
    """Either a single user, or every active user holding `role` in the organisation."""

    user_id: Optional[str] = None
    role: Optional[account_models.AccountRole] = None

    def __post_init__(self) -> None:
        if (self.user_id is None) == (self.role is None):
            raise ValidationError.single(
                "invalid_target", "target", "Exactly one of user_id or role is required"
            )

    @classmethod
    def user(cls, user_id: str) -> "NotificationTarget":
        return cls(user_id=user_id)

    @classmethod
    def for_role(cls, role: account_models.AccountRole) -> "NotificationTarget":
        return cls(role=role)


def _resolve_recipients(db: Session, *, org_id: str, target: NotificationTarget) -> List[str]:
    query = db.query(account_models.User.id).filter(
        account_models.User.org_id == org_id,
        account_models.User.is_active.is_(True),
    )
    if target.user_id is not None:
        query = query.filter(account_models.User.id == target.user_id)
    else:
        query = query.filter(account_models.User.role == target.role)
    return [row[0] for row in query.order_by(account_models.User.id).all()]


def _already_sent(db: Session, *, org_id: str, user_id: str, dedupe_key: str) -> bool:
    return (
        db.query(models.Notification.id)
        .filter(
            models.Notification.org_id == org_id,
            models.Notification.user_id == user_id,
            models.Notification.dedupe_key == dedupe_key,
        )
        .first()
        is not None
    )


def _handle_failure(exc: Exception, *, org_id: str, type: models.NotificationType, critical: bool) -> None:
    logger.warning(
        "Failed to create notification",
        extra={"org_id": org_id, "type": type.value, "critical": critical, "error": str(exc)},
    )
    if critical:
        raise DependencyError.single("notification_failed", "notification", str(exc)) from exc


def notify(
    db: Session,
    *,
    org_id: str,
    target: NotificationTarget,
    type: models.NotificationType,
    payload: Optional[Dict[str, Any]] = None,
    title: Optional[str] = None,
    body: Optional[str] = None,
    link_path: Optional[str] = None,
    dedupe_key: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    critical: bool = False,
) -> List[models.Notification]:
    """
    Fire-and-forget notification record(s) for `target`.

    Each row is written in its own savepoint. Failures are logged and
    swallowed unless `critical`, in which case DependencyError is raised.
    A repeated `dedupe_key` for the same user is a no-op.
    """
    try:
        recipients = _resolve_recipients(db, org_id=org_id, target=target)
    except Exception as exc:
        _handle_failure(exc, org_id=org_id, type=type, critical=critical)
        return []

    if not recipients:
        logger.info(
            "Notification has no recipients",
            extra={"org_id": org_id, "type": type.value, "user_id": target.user_id, "role": target.role},
        )
        return []

    created: List[models.Notification] = []
    for user_id in recipients:
        if dedupe_key and _already_sent(db, org_id=org_id, user_id=user_id, dedupe_key=dedupe_key):
            continue
        note = models.Notification(
            org_id=org_id,
            user_id=user_id,
            type=type,
            title=title or DEFAULT_TITLES.get(type, type.value),
            body=body,
            payload=payload or {},
            link_path=link_path,
            dedupe_key=dedupe_key,
            created_by=actor_user_id,
        )
        try:
            with db.begin_nested():
                db.add(note)
                db.flush()
        except IntegrityError as exc:
            if dedupe_key:
                # Lost a race with an identical notification.
                continue
            _handle_failure(exc, org_id=org_id, type=type, critical=critical)
            continue
        except Exception as exc:
            _handle_failure(exc, org_id=org_id, type=type, critical=critical)
            continue
        created.append(note)
    return created


def list_notifications(
    db: Session,
    *,
    user: account_models.User,
    unread_only: bool = False,
) -> List[models.Notification]:
    query = db.query(models.Notification).filter(
        models.Notification.org_id == user.org_id,
        models.Notification.user_id == user.id,
    )
    if unread_only:
        query = query.filter(models.Notification.read_at.is_(None))
    return query.order_by(models.Notification.created_at.desc()).all()


def mark_read(db: Session, *, user: account_models.User, notification_id: str) -> models.Notification:
    note = (
        db.query(models.Notification)
        .filter(
            models.Notification.id == notification_id,
            models.Notification.org_id == user.org_id,
            models.Notification.user_id == user.id,
        )
        .first()
    )
    if not note:
        raise not_found("Notification", notification_id)
    if note.read_at is None:
        note.read_at = _utcnow()
        db.add(note)
        db.flush()
    return note


def mark_all_read(db: Session, *, user: account_models.User) -> int:
    unread = (
        db.query(models.Notification)
        .filter(
            models.Notification.org_id == user.org_id,
            models.Notification.user_id == user.id,
            models.Notification.read_at.is_(None),
        )
        .all()
    )
    now = _utcnow()
    for note in unread:
        note.read_at = now
        db.add(note)
    db.flush()
    return len(unread)
