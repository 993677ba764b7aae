from __future__ import annotations

from .guards import (
    guard_activity_completion,
    guard_activity_validation,
    guard_module_return,
    guard_module_review,
    guard_nomination_decision,
)

# State names are the persisted enum values of each entity's status column.
WORKFLOWS = {
    "user_competency": {
        "transitions": {
            "not_started": {"assigned": [], "in_progress": [], "achieved": []},
            "assigned": {"in_progress": [], "achieved": []},
            "in_progress": {"achieved": []},
            # A later assessment may land below target again.
            "achieved": {"in_progress": []},
        }
    },
    "development_activity": {
        "transitions": {
            "pending": {
                "in_progress": [],
                "completed": [guard_activity_completion],
                "cancelled": [],
            },
            "in_progress": {
                "completed": [guard_activity_completion],
                "cancelled": [],
            },
            "completed": {
                "validated": [guard_activity_validation],
                "cancelled": [],
            },
            "validated": {},
            "cancelled": {},
        }
    },
    "expert_nomination": {
        "transitions": {
            "pending": {
                "approved": [guard_nomination_decision],
                "rejected": [guard_nomination_decision],
            },
            "approved": {},
            "rejected": {},
        }
    },
    "training_module": {
        "transitions": {
            "draft": {"submitted": []},
            "submitted": {
                "published": [guard_module_review],
                "returned": [guard_module_review, guard_module_return],
            },
            "returned": {"submitted": []},
            "published": {},
        }
    },
}


def allowed_targets(entity_type: str, from_state: str) -> set[str]:
    workflow = WORKFLOWS.get(entity_type, {})
    return set(workflow.get("transitions", {}).get(from_state, {}))


def is_terminal(entity_type: str, state: str) -> bool:
    return not allowed_targets(entity_type, state)
