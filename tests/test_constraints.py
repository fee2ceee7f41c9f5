"""Tests for round-based capacity rules.

Covers rule validation, TA requirement derivation and the per-round cap.
"""

from __future__ import annotations

import pytest

from backend.domain.constraints import (
    CapacityRules,
    allocation_cap,
    compute_ta_required,
    has_capacity,
    validate_capacity_rules,
)
from backend.domain.models import Course


DEFAULT_RULES = CapacityRules(large_course_threshold=100, large_course_cap=2, small_course_cap=1)


def make_course(total_students: int, ratio: int = 30, allocated: tuple[int, ...] = ()) -> Course:
    """Return a course with the derived requirement, optionally pre-filled."""
    return Course(
        course_id=1,
        name="Data Structures",
        code="CSE102",
        acronym="DSA",
        department_id=None,
        credits=4,
        total_students=total_students,
        ta_student_ratio=ratio,
        ta_required=compute_ta_required(total_students, ratio),
        ta_allocated=allocated,
    )


# --- Rule validation ---

def test_default_rules_pass() -> None:
    validate_capacity_rules(DEFAULT_RULES)


@pytest.mark.parametrize(
    "field_name",
    ["large_course_threshold", "large_course_cap", "small_course_cap"],
)
def test_non_positive_rule_raises(field_name: str) -> None:
    values = {
        "large_course_threshold": 100,
        "large_course_cap": 2,
        "small_course_cap": 1,
    }
    values[field_name] = 0
    with pytest.raises(ValueError):
        validate_capacity_rules(CapacityRules(**values))


# --- compute_ta_required ---

def test_ta_required_rounds_up() -> None:
    assert compute_ta_required(90, 30) == 3
    assert compute_ta_required(91, 30) == 4


def test_ta_required_zero_students() -> None:
    assert compute_ta_required(0, 30) == 0


def test_ta_required_rejects_zero_ratio() -> None:
    with pytest.raises(ValueError):
        compute_ta_required(40, 0)


def test_ta_required_rejects_negative_students() -> None:
    with pytest.raises(ValueError):
        compute_ta_required(-1, 10)


# --- allocation_cap ---

def test_round_one_small_course_cap_is_one() -> None:
    assert allocation_cap(make_course(99), 1, DEFAULT_RULES) == 1


def test_round_one_threshold_is_inclusive() -> None:
    """Exactly 100 students already counts as a large course."""
    assert allocation_cap(make_course(100), 1, DEFAULT_RULES) == 2


def test_later_round_cap_follows_requirement() -> None:
    course = make_course(240, ratio=30)
    assert allocation_cap(course, 2, DEFAULT_RULES) == 8
    assert allocation_cap(course, 5, DEFAULT_RULES) == 8


def test_has_capacity_stops_at_cap() -> None:
    assert has_capacity(make_course(50, allocated=()), 1, DEFAULT_RULES)
    assert not has_capacity(make_course(50, allocated=(7,)), 1, DEFAULT_RULES)
    assert has_capacity(make_course(150, allocated=(7,)), 1, DEFAULT_RULES)
    assert not has_capacity(make_course(150, allocated=(7, 8)), 1, DEFAULT_RULES)
