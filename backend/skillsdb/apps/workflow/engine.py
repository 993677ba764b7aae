from __future__ import annotations

import enum
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from skillsdb.apps.accounts import models as account_models
from skillsdb.apps.audit import services as audit_services
from skillsdb.errors import ConflictError, ValidationError

from .registry import WORKFLOWS


class TransitionError(ConflictError):
    """A status change that the entity's workflow does not allow."""


def _state(value: Any) -> str:
    if isinstance(value, enum.Enum):
        return str(value.value)
    return str(value)


def _extract_org_id(db: Session, actor_user_id: Optional[str], before_obj: Any, after_obj: Any) -> Optional[str]:
    for obj in (after_obj, before_obj):
        if isinstance(obj, dict) and obj.get("org_id"):
            return obj.get("org_id")
        org_id = getattr(obj, "org_id", None)
        if org_id:
            return org_id

    if actor_user_id:
        user = db.query(account_models.User).filter(account_models.User.id == actor_user_id).first()
        if user:
            return user.org_id
    return None


def _payload(obj: Any) -> Dict[str, Any]:
    if not isinstance(obj, dict):
        return {}
    return {
        key: (_state(value) if isinstance(value, enum.Enum) else value)
        for key, value in obj.items()
        if key != "org_id"
    }


def check_transition(entity_type: str, from_state: Any, to_state: Any) -> None:
    """Raise TransitionError unless `from_state -> to_state` is registered."""
    from_value, to_value = _state(from_state), _state(to_state)
    workflow = WORKFLOWS.get(entity_type)
    if not workflow:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "entity_type", "reason": f"No workflow registered for {entity_type}"}],
        )
    allowed = workflow.get("transitions", {}).get(from_value, {})
    if to_value not in allowed:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "status", "reason": f"Cannot transition from {from_value} to {to_value}"}],
        )


def apply_transition(
    db: Session,
    *,
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    from_state: Any,
    to_state: Any,
    before_obj: Any = None,
    after_obj: Any = None,
    correlation_id: Optional[str] = None,
    critical: bool = True,
) -> None:
    """
    Validate a status change against the registry, run its guards against the
    proposed `after_obj`, then record a `transition` audit event.

    Callers mutate the entity only after this returns.
    """
    check_transition(entity_type, from_state, to_state)
    from_value, to_value = _state(from_state), _state(to_state)

    guards = WORKFLOWS[entity_type]["transitions"][from_value][to_value]
    failures = []
    for guard in guards:
        failures.extend(
            guard(
                db,
                before_obj=before_obj,
                after_obj=after_obj,
                from_state=from_value,
                to_state=to_value,
            )
        )

    if failures:
        raise ValidationError(code="missing_requirements", detail=failures)

    org_id = _extract_org_id(db, actor_user_id, before_obj, after_obj)
    if not org_id:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "org_id", "reason": "Unable to resolve organisation for transition"}],
        )

    before_payload: Dict[str, Any] = {"status": from_value}
    after_payload: Dict[str, Any] = {"status": to_value}
    before_payload.update(_payload(before_obj))
    after_payload.update(_payload(after_obj))

    audit_services.log_event(
        db,
        org_id=org_id,
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action="transition",
        before=before_payload,
        after=after_payload,
        correlation_id=correlation_id,
        metadata={"workflow": entity_type},
        critical=critical,
    )
