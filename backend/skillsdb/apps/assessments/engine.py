"""
Staircase scoring for rubric assessments.

Levels build on each other: the achieved level is the top of the unbroken
run of passed levels starting at 1. The first level that failed or was not
assessed ends the run, so a pass at level 4 after a fail at level 3 does not
count. If nothing was passed the result is still level 1.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Union

from skillsdb.errors import ValidationError

MIN_ACHIEVED_LEVEL = 1
MAX_LEVEL = 5

CriteriaResults = Mapping[Union[int, str], Optional[bool]]


def normalise_criteria(criteria_results: Optional[CriteriaResults]) -> Dict[int, Optional[bool]]:
    """Coerce JSON-style string keys to ints, dropping keys that are not levels."""
    normalised: Dict[int, Optional[bool]] = {}
    for key, value in (criteria_results or {}).items():
        try:
            level = int(key)
        except (TypeError, ValueError):
            raise ValidationError.single("invalid_criteria", "criteria_results", f"Unknown level key {key!r}")
        if value is not None and not isinstance(value, bool):
            raise ValidationError.single(
                "invalid_criteria", "criteria_results", f"Level {level} must be true, false or null"
            )
        normalised[level] = value
    return normalised


def compute_achieved_level(criteria_results: Optional[CriteriaResults], target_level: int) -> int:
    if target_level is None or target_level < 1 or target_level > MAX_LEVEL:
        raise ValidationError.single("invalid_level", "target_level", "target_level must be between 1 and 5")

    results = normalise_criteria(criteria_results)
    achieved = 0
    for level in range(1, target_level + 1):
        if results.get(level) is True:
            achieved = level
        else:
            break
    return max(achieved, MIN_ACHIEVED_LEVEL)
