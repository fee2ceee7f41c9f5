"""Transactional allocate / deallocate / freeze workflow for TA assignments."""

from __future__ import annotations

import time
from typing import Any, Callable, Optional, Protocol, TypeVar

from backend.domain.constraints import (
    CapacityRules,
    allocation_cap,
    has_capacity,
    validate_capacity_rules,
)
from backend.domain.models import (
    ACTION_ALLOCATED,
    ACTION_DEALLOCATED,
    Actor,
    AllocationOutcome,
    AllocationStatus,
    Course,
    Feedback,
    JMActor,
    LogEntry,
    ProfessorActor,
    Student,
)
from backend.repository.data_repository import DataRepository, StoreConflictError, utc_now
from backend.repository.store_session import StoreSession
from backend.services.broadcast_service import (
    LIVE_LOGS_EVENT,
    STUDENT_UPDATED_EVENT,
    Broadcaster,
)
from backend.services.notification_service import AllocationNotice
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

ADMIN_SENTINEL_EMAIL = "admin"


class AllocationError(Exception):
    """Base class for allocation workflow failures."""


class NoActiveRoundError(AllocationError):
    """Raised when no round is ongoing."""


class NotFoundError(AllocationError):
    """Raised when a referenced student or course does not exist."""


class CapacityExceededError(AllocationError):
    """Raised when the course already holds its round's TA quota."""


class AlreadyAllocatedError(AllocationError):
    """Raised when the student already holds an allocation."""


class RoundRestrictedError(AllocationError):
    """Raised when faculty try to allocate outside round 1."""


class NotAllocatedError(AllocationError):
    """Raised when deallocating a student that holds no matching allocation."""


class NotAllocatableError(AllocationError):
    """Raised when the student's allocation is in the wrong state for the action."""


class FrozenAllocationError(NotAllocatableError):
    """Raised when a frozen allocation is asked to change."""


class TransactionConflictError(AllocationError):
    """Raised when concurrent writers kept the store locked past every retry."""


class AllocationInternalError(AllocationError):
    """Raised when the store fails mid-transaction; nothing was written."""


class Notifier(Protocol):
    def send_allocation(self, notice: AllocationNotice) -> Any:
        ...

    def send_deallocation(self, notice: AllocationNotice) -> Any:
        ...


def log_entry_to_dict(
    entry: LogEntry,
    student: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    return {
        "id": entry.log_id,
        "student": student if student is not None else entry.student_id,
        "userEmailId": entry.user_email_id,
        "userRole": entry.user_role,
        "action": entry.action,
        "course": entry.course,
        "createdAt": entry.created_at,
    }


def resolve_actor_email(store: StoreSession, actor: Actor) -> Optional[str]:
    """Display email of whoever triggered the change.

    Unknown JM/professor ids resolve to ``None`` rather than failing.
    """
    if isinstance(actor, JMActor):
        jm = store.get_jm(actor.actor_id)
        return jm.email_id if jm is not None else None
    if isinstance(actor, ProfessorActor):
        professor = store.get_professor(actor.actor_id)
        return professor.email_id if professor is not None else None
    return ADMIN_SENTINEL_EMAIL


class AllocationService:
    """Allocation engine.

    Every transition runs its precondition checks and writes inside one
    ``BEGIN IMMEDIATE`` transaction, retried as a whole when the write lock
    is contended. Email and live broadcasts happen only after commit.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        broadcaster: Optional[Broadcaster] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._notifier = notifier
        self._broadcaster = broadcaster
        self._sleep = sleep
        self._rules = CapacityRules(
            large_course_threshold=self._settings.round_one_large_course_threshold,
            large_course_cap=self._settings.round_one_large_course_cap,
            small_course_cap=self._settings.round_one_small_course_cap,
        )
        validate_capacity_rules(self._rules)
        if self._settings.transaction_max_attempts <= 0:
            raise ValueError("transaction_max_attempts must be > 0")

    @property
    def capacity_rules(self) -> CapacityRules:
        return self._rules

    def allocate(self, student_id: int, course_id: int, actor: Actor) -> AllocationOutcome:
        def work(store: StoreSession) -> tuple[AllocationOutcome, AllocationNotice]:
            current_round = store.find_current_round()
            if current_round is None:
                raise NoActiveRoundError("No ongoing round for allocation.")
            if isinstance(actor, ProfessorActor) and current_round.current_round != 1:
                raise RoundRestrictedError("Faculty can only allocate in Round 1")

            student = store.get_student(student_id)
            course = store.get_course(course_id)
            if student is None or course is None:
                raise NotFoundError("Student or Course not found")

            if not has_capacity(course, current_round.current_round, self._rules):
                cap = allocation_cap(course, current_round.current_round, self._rules)
                noun = "student" if cap == 1 else "students"
                raise CapacityExceededError(f"Maximum allocation limit reached ({cap} {noun}).")
            if not student.is_unallocated:
                raise AlreadyAllocatedError("Student is not available for allocation")

            store.set_student_allocation(student_id, course_id, AllocationStatus.ALLOCATED)
            store.append_course_allocation(course_id, student_id)
            updated_student = store.get_student(student_id)
            updated_course = store.get_course(course_id)

            log_entry = store.insert_log_entry(
                student_id=student_id,
                user_email_id=resolve_actor_email(store, actor),
                user_role=actor.role,
                action=ACTION_ALLOCATED,
                course_snapshot=updated_course.snapshot(),
                created_at=utc_now(),
            )
            feedback_ids = [
                store.insert_feedback(
                    Feedback(
                        feedback_id=None,
                        course_id=course_id,
                        student_id=student_id,
                        professor_id=professor_id,
                    )
                )
                for professor_id in updated_course.professor_ids
            ]
            outcome = AllocationOutcome(
                message="Student allocated successfully",
                student=updated_student,
                course=updated_course,
                log_entry=log_entry,
                feedback_ids=feedback_ids,
            )
            return outcome, self._build_notice(store, ACTION_ALLOCATED, updated_student, updated_course, actor)

        outcome, notice = self._run_atomic("allocate", work)
        logger.info(
            "Allocated student %s to course %s by %s",
            student_id,
            course_id,
            actor.role,
        )
        self._notify(notice)
        self._publish(outcome)
        return outcome

    def deallocate(
        self,
        student_id: int,
        actor: Actor,
        course_id: Optional[int] = None,
    ) -> AllocationOutcome:
        def work(store: StoreSession) -> tuple[AllocationOutcome, AllocationNotice]:
            student = store.get_student(student_id)
            if student is None:
                raise NotFoundError("Student not found")
            if student.allocation_status == AllocationStatus.UNALLOCATED:
                raise NotAllocatedError("Student is not allocated")
            if student.allocation_status == AllocationStatus.FROZEN:
                raise FrozenAllocationError("Student allocation is frozen and cannot be changed")
            if course_id is not None and course_id != student.allocated_ta:
                raise NotAllocatedError(f"Student is not allocated to course {course_id}")

            current_course_id = student.allocated_ta
            if store.get_course(current_course_id) is None:
                raise NotFoundError("Allocated course not found")

            store.remove_course_allocation(current_course_id, student_id)
            store.set_student_allocation(student_id, None, AllocationStatus.UNALLOCATED)
            store.delete_feedback_for(student_id, current_course_id)
            updated_student = store.get_student(student_id)
            updated_course = store.get_course(current_course_id)

            log_entry = store.insert_log_entry(
                student_id=student_id,
                user_email_id=resolve_actor_email(store, actor),
                user_role=actor.role,
                action=ACTION_DEALLOCATED,
                course_snapshot=updated_course.snapshot(),
                created_at=utc_now(),
            )
            outcome = AllocationOutcome(
                message="Student deallocated successfully",
                student=updated_student,
                course=updated_course,
                log_entry=log_entry,
            )
            return outcome, self._build_notice(store, ACTION_DEALLOCATED, updated_student, updated_course, actor)

        outcome, notice = self._run_atomic("deallocate", work)
        logger.info(
            "Deallocated student %s from course %s by %s",
            student_id,
            outcome.course.course_id if outcome.course else None,
            actor.role,
        )
        self._notify(notice)
        self._publish(outcome)
        return outcome

    def freeze(self, student_id: int) -> AllocationOutcome:
        def work(store: StoreSession) -> AllocationOutcome:
            student = store.get_student(student_id)
            if student is None:
                raise NotFoundError("Student not found")
            if student.allocation_status != AllocationStatus.ALLOCATED or student.allocated_ta is None:
                raise NotAllocatableError("Cannot freeze allocation")
            store.set_student_allocation(student_id, student.allocated_ta, AllocationStatus.FROZEN)
            return AllocationOutcome(
                message="Student allocation frozen successfully",
                student=store.get_student(student_id),
                course=store.get_course(student.allocated_ta),
            )

        outcome = self._run_atomic("freeze", work)
        logger.info("Froze allocation of student %s", student_id)
        self._publish(outcome)
        return outcome

    def list_logs(self) -> list[dict[str, Any]]:
        with self._repository.session() as store:
            entries = store.list_log_entries()
            students = store.get_students(entry.student_id for entry in entries)
        return [
            log_entry_to_dict(
                entry,
                students[entry.student_id].to_flat_dict() if entry.student_id in students else None,
            )
            for entry in entries
        ]

    def allocation_report(self) -> list[dict[str, Any]]:
        """One row per (course, TA) pair, in course then allocation order."""
        with self._repository.session() as store:
            courses = store.list_allocated_courses()
            students = store.get_students(
                student_id for course in courses for student_id in course.ta_allocated
            )

        rows: list[dict[str, Any]] = []
        for course in courses:
            for student_id in course.ta_allocated:
                student = students.get(student_id)
                if student is None:
                    logger.error("Student with ID %s not found", student_id)
                    continue
                rows.append(
                    {
                        "Roll No.": student.roll_no,
                        "Name": student.name,
                        "Program": student.program,
                        "Department": student.department,
                        "TA Type": student.ta_type,
                        "Course": course.name,
                        "Course Code": course.code,
                    }
                )
        return rows

    def _run_atomic(self, operation: str, work: Callable[[StoreSession], T]) -> T:
        attempts = self._settings.transaction_max_attempts
        last_conflict: Optional[StoreConflictError] = None
        for attempt in range(1, attempts + 1):
            try:
                with self._repository.transaction() as store:
                    return work(store)
            except AllocationError:
                raise
            except StoreConflictError as exc:
                last_conflict = exc
                logger.warning(
                    "%s hit a write conflict (attempt %s/%s): %s",
                    operation,
                    attempt,
                    attempts,
                    exc,
                )
                if attempt < attempts:
                    self._sleep(self._settings.transaction_retry_backoff_seconds * attempt)
            except Exception as exc:
                logger.exception("%s failed inside the transaction", operation)
                raise AllocationInternalError(f"Internal server error: {exc}") from exc
        raise TransactionConflictError(
            f"{operation} could not complete after {attempts} attempts due to concurrent updates"
        ) from last_conflict

    def _build_notice(
        self,
        store: StoreSession,
        action: str,
        student: Student,
        course: Course,
        actor: Actor,
    ) -> AllocationNotice:
        department = store.get_jm(course.department_id) if course.department_id is not None else None
        professors = store.get_professors(course.professor_ids)
        return AllocationNotice(
            action=action,
            student_email=student.email_id,
            admin_email=self._settings.admin_email,
            department_email=department.email_id if department is not None else None,
            professor_emails=tuple(professor.email_id for professor in professors),
            actor_role=actor.role,
            course_name=course.name,
        )

    def _notify(self, notice: AllocationNotice) -> None:
        if self._notifier is None:
            return
        try:
            if notice.action == ACTION_DEALLOCATED:
                self._notifier.send_deallocation(notice)
            else:
                self._notifier.send_allocation(notice)
        except Exception:
            logger.exception("Failed to queue %s notice for %s", notice.action, notice.student_email)

    def _publish(self, outcome: AllocationOutcome) -> None:
        if self._broadcaster is None:
            return
        flat_student = outcome.student.to_flat_dict()
        try:
            if outcome.log_entry is not None:
                self._broadcaster.emit(LIVE_LOGS_EVENT, log_entry_to_dict(outcome.log_entry, flat_student))
            self._broadcaster.emit(STUDENT_UPDATED_EVENT, flat_student)
        except Exception:
            logger.exception("Live update broadcast failed for student %s", outcome.student.student_id)
