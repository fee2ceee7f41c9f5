"""Domain records for TA allocation, rounds, audit logs and feedback."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Optional, Union


class AllocationStatus(IntEnum):
    UNALLOCATED = 0
    ALLOCATED = 1
    FROZEN = 2


ACTION_ALLOCATED = "Allocated"
ACTION_DEALLOCATED = "Deallocated"

GRADE_CHOICES = ("S", "X")
RATING_CHOICES = ("Excellent", "Very Good", "Good", "Average", "Below Average", "NA")
RATING_FIELDS = (
    "regularity_in_meeting",
    "attendance_in_lectures",
    "preparedness_for_tutorials",
    "timeliness_of_tasks",
    "quality_of_work",
    "attitude_commitment",
)
DEFAULT_GRADE = "S"
DEFAULT_RATING = "Average"


@dataclass(frozen=True)
class JMActor:
    actor_id: int

    @property
    def role(self) -> str:
        return "jm"


@dataclass(frozen=True)
class ProfessorActor:
    actor_id: int

    @property
    def role(self) -> str:
        return "professor"


@dataclass(frozen=True)
class AdminActor:
    actor_id: Optional[int] = None

    @property
    def role(self) -> str:
        return "admin"


Actor = Union[JMActor, ProfessorActor, AdminActor]


def parse_actor(role: Optional[str], actor_id: Optional[int]) -> Actor:
    """Resolve the request role tag once; anything unknown acts as admin."""
    normalized = (role or "").strip().lower()
    if normalized in {"jm", "professor"} and actor_id is None:
        raise ValueError(f"actor id is required for role '{normalized}'")
    if normalized == "jm":
        return JMActor(actor_id=actor_id)
    if normalized == "professor":
        return ProfessorActor(actor_id=actor_id)
    return AdminActor(actor_id=actor_id)


@dataclass(frozen=True)
class Student:
    student_id: int
    name: str
    email_id: str
    roll_no: str
    program: str
    department: str
    ta_type: str
    allocation_status: AllocationStatus
    allocated_ta: Optional[int]

    @property
    def is_unallocated(self) -> bool:
        return self.allocation_status == AllocationStatus.UNALLOCATED and self.allocated_ta is None

    def to_flat_dict(self) -> dict[str, Any]:
        return {
            "id": self.student_id,
            "name": self.name,
            "emailId": self.email_id,
            "rollNo": self.roll_no,
            "program": self.program,
            "department": self.department,
            "taType": self.ta_type,
            "allocationStatus": int(self.allocation_status),
            "allocatedTA": self.allocated_ta,
        }


@dataclass(frozen=True)
class Professor:
    professor_id: int
    name: str
    email_id: str


@dataclass(frozen=True)
class JM:
    jm_id: int
    department: str
    email_id: str


@dataclass(frozen=True)
class Course:
    course_id: int
    name: str
    code: str
    acronym: str
    department_id: Optional[int]
    credits: int
    total_students: int
    ta_student_ratio: int
    ta_required: int
    ta_allocated: tuple[int, ...] = ()
    professor_ids: tuple[int, ...] = ()

    def snapshot(self) -> dict[str, Any]:
        """Course state copied into audit log entries."""
        return {
            "id": self.course_id,
            "name": self.name,
            "code": self.code,
            "acronym": self.acronym,
            "department": self.department_id,
            "credits": self.credits,
            "totalStudents": self.total_students,
            "taStudentRatio": self.ta_student_ratio,
            "taRequired": self.ta_required,
            "taAllocated": list(self.ta_allocated),
            "professor": list(self.professor_ids),
        }


@dataclass(frozen=True)
class Round:
    round_id: int
    current_round: int
    ongoing: bool
    start_date: Optional[str]
    end_date: Optional[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.round_id,
            "currentRound": self.current_round,
            "ongoing": self.ongoing,
            "startDate": self.start_date,
            "endDate": self.end_date,
        }


@dataclass(frozen=True)
class LogEntry:
    log_id: int
    student_id: int
    user_email_id: Optional[str]
    user_role: str
    action: str
    course: dict[str, Any]
    created_at: str


@dataclass(frozen=True)
class Feedback:
    feedback_id: Optional[int]
    course_id: int
    student_id: int
    professor_id: int
    overall_grade: str = DEFAULT_GRADE
    regularity_in_meeting: str = DEFAULT_RATING
    attendance_in_lectures: str = DEFAULT_RATING
    preparedness_for_tutorials: str = DEFAULT_RATING
    timeliness_of_tasks: str = DEFAULT_RATING
    quality_of_work: str = DEFAULT_RATING
    attitude_commitment: str = DEFAULT_RATING
    nominated_for_best_ta: bool = False
    comments: str = ""

    def is_placeholder(self) -> bool:
        """True while every field still holds the value it was created with."""
        return (
            self.overall_grade == DEFAULT_GRADE
            and all(getattr(self, name) == DEFAULT_RATING for name in RATING_FIELDS)
            and not self.nominated_for_best_ta
            and not (self.comments or "").strip()
        )


@dataclass(frozen=True)
class AllocationOutcome:
    message: str
    student: Student
    course: Optional[Course] = None
    log_entry: Optional[LogEntry] = None
    feedback_ids: list[int] = field(default_factory=list)
