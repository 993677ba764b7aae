"""
Per-item outcome accounting for batch operations.

Batch assignment and batch assessment never fail as a whole: each item ends up
in exactly one of `succeeded`, `skipped` (a conflict that was absorbed, e.g. the
user already holds the competency) or `failed` (an unexpected error for that
item only).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, TypeVar

T = TypeVar("T")


@dataclass
class SkippedItem:
    key: str
    reason: str


@dataclass
class FailedItem:
    key: str
    code: str
    error: str


@dataclass
class BatchResult(Generic[T]):
    succeeded: List[T] = field(default_factory=list)
    skipped: List[SkippedItem] = field(default_factory=list)
    failed: List[FailedItem] = field(default_factory=list)

    def add_success(self, item: T) -> None:
        self.succeeded.append(item)

    def add_skip(self, key: str, reason: str) -> None:
        self.skipped.append(SkippedItem(key=key, reason=reason))

    def add_failure(self, key: str, code: str, error: str) -> None:
        self.failed.append(FailedItem(key=key, code=code, error=error))

    @property
    def skipped_keys(self) -> List[str]:
        return [item.key for item in self.skipped]

    @property
    def failed_keys(self) -> List[str]:
        return [item.key for item in self.failed]

    def summary(self) -> Dict[str, Any]:
        return {
            "succeeded": len(self.succeeded),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
        }
