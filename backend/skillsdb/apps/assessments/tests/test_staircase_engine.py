import pytest

from skillsdb.apps.assessments.engine import compute_achieved_level, normalise_criteria
from skillsdb.errors import ValidationError


def test_gap_in_the_staircase_stops_the_run():
    results = {1: True, 2: True, 3: False, 4: True}
    assert compute_achieved_level(results, 5) == 2


def test_all_levels_passed_reaches_target():
    assert compute_achieved_level({1: True, 2: True, 3: True}, 3) == 3


def test_nothing_passed_floors_at_one():
    assert compute_achieved_level({}, 4) == 1
    assert compute_achieved_level(None, 4) == 1
    assert compute_achieved_level({1: False, 2: True}, 4) == 1


def test_unassessed_level_ends_the_run():
    assert compute_achieved_level({1: True, 2: None, 3: True}, 3) == 1
    assert compute_achieved_level({1: True, 3: True}, 3) == 1


def test_levels_above_target_are_ignored():
    results = {1: True, 2: True, 3: True, 4: True, 5: True}
    assert compute_achieved_level(results, 3) == 3


def test_json_string_keys_are_accepted():
    assert compute_achieved_level({"1": True, "2": True, "3": False}, 4) == 2
    assert normalise_criteria({"2": None}) == {2: None}


@pytest.mark.parametrize("target", [0, 6, None])
def test_target_out_of_range_is_rejected(target):
    with pytest.raises(ValidationError):
        compute_achieved_level({1: True}, target)


def test_malformed_criteria_are_rejected():
    with pytest.raises(ValidationError):
        normalise_criteria({"level-one": True})
    with pytest.raises(ValidationError):
        normalise_criteria({1: "yes"})
