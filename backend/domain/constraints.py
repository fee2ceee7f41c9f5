"""Domain-level capacity rules for round-based TA allocation."""

from __future__ import annotations

import math
from dataclasses import dataclass

from backend.domain.models import Course


@dataclass(frozen=True)
class CapacityRules:
    large_course_threshold: int
    large_course_cap: int
    small_course_cap: int


def validate_capacity_rules(rules: CapacityRules) -> None:
    if rules.large_course_threshold <= 0:
        raise ValueError("large_course_threshold must be > 0")
    if rules.large_course_cap <= 0:
        raise ValueError("large_course_cap must be > 0")
    if rules.small_course_cap <= 0:
        raise ValueError("small_course_cap must be > 0")


def compute_ta_required(total_students: int, ta_student_ratio: int) -> int:
    if ta_student_ratio <= 0:
        raise ValueError("ta_student_ratio must be > 0")
    if total_students < 0:
        raise ValueError("total_students must be >= 0")
    return math.ceil(total_students / ta_student_ratio)


def allocation_cap(course: Course, round_number: int, rules: CapacityRules) -> int:
    """Maximum TAs a course may hold while ``round_number`` is running.

    Round 1 hands out at most one TA per course (two for large courses);
    later rounds fill up to the course's computed requirement.
    """
    if round_number == 1:
        if course.total_students >= rules.large_course_threshold:
            return rules.large_course_cap
        return rules.small_course_cap
    return course.ta_required


def has_capacity(course: Course, round_number: int, rules: CapacityRules) -> bool:
    return len(course.ta_allocated) < allocation_cap(course, round_number, rules)
