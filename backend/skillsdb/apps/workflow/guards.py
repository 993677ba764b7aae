from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy.orm import Session

GuardResult = List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def guard_activity_completion(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if not _get_value(after_obj, "completed_at"):
        return [{"field": "completed_at", "reason": "completion timestamp required"}]
    return []


def guard_activity_validation(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    missing = []
    if not _get_value(after_obj, "validated_by"):
        missing.append({"field": "validated_by", "reason": "validator required"})
    if not _get_value(after_obj, "validated_at"):
        missing.append({"field": "validated_at", "reason": "validation timestamp required"})
    return missing


def guard_nomination_decision(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    missing = []
    if not _get_value(after_obj, "decided_by"):
        missing.append({"field": "decided_by", "reason": "decision maker required"})
    if not _get_value(after_obj, "decided_at"):
        missing.append({"field": "decided_at", "reason": "decision timestamp required"})
    return missing


def guard_module_review(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    missing = []
    if not _get_value(after_obj, "reviewed_by"):
        missing.append({"field": "reviewed_by", "reason": "reviewer required"})
    if not _get_value(after_obj, "reviewed_at"):
        missing.append({"field": "reviewed_at", "reason": "review timestamp required"})
    return missing


def guard_module_return(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    notes = _get_value(after_obj, "review_notes")
    if not notes or not str(notes).strip():
        return [{"field": "review_notes", "reason": "rejection requires notes"}]
    return []
