from .engine import TransitionError, apply_transition, check_transition
from .registry import WORKFLOWS, allowed_targets, is_terminal

__all__ = [
    "TransitionError",
    "WORKFLOWS",
    "allowed_targets",
    "apply_transition",
    "check_transition",
    "is_terminal",
]
