"""
Error taxonomy shared by the lifecycle services.

Every error carries a machine-readable `code` and a list of
`{"field": ..., "reason": ...}` details; rejected workflow transitions use
the same shape. Routers do not catch these;
`skillsdb.main` maps them onto HTTP responses via `status_code`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional


@dataclass(eq=False)
class LifecycleError(Exception):
    code: str
    detail: List[Dict[str, str]] = field(default_factory=list)

    status_code: ClassVar[int] = 400

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @classmethod
    def single(cls, code: str, field_name: str, reason: str) -> "LifecycleError":
        return cls(code=code, detail=[{"field": field_name, "reason": reason}])

    @property
    def message(self) -> str:
        reasons = [item.get("reason", "") for item in self.detail if item.get("reason")]
        return "; ".join(reasons) or self.code

    def __str__(self) -> str:
        return self.message


class ValidationError(LifecycleError):
    """Missing or malformed input; raised before anything is written."""

    status_code: ClassVar[int] = 422


class ConflictError(LifecycleError):
    """The request would break a lifecycle invariant."""

    status_code: ClassVar[int] = 409


class NotFoundError(LifecycleError):
    status_code: ClassVar[int] = 404


class PermissionDeniedError(LifecycleError):
    status_code: ClassVar[int] = 403


class DependencyError(LifecycleError):
    """Persistence layer or notification dispatcher failure."""

    status_code: ClassVar[int] = 503


def not_found(entity: str, entity_id: Optional[str] = None) -> NotFoundError:
    reason = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
    return NotFoundError.single("not_found", entity.lower().replace(" ", "_"), reason)
