"""Course catalogue: lookup, filtered listing, bulk upsert, update and delete."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from backend.domain.constraints import compute_ta_required
from backend.domain.models import Course
from backend.repository.data_repository import DataRepository, StoreConflictError
from backend.repository.store_session import StoreSession
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class CourseError(Exception):
    """Base failure for course catalogue operations."""


class CourseNotFoundError(CourseError):
    """Raised when a course id does not exist."""


class CourseValidationError(CourseError):
    """Raised when course input references unknown data or breaks a rule."""


class CourseConflictError(CourseError):
    """Raised when the store stayed locked by another writer."""


@dataclass(frozen=True)
class CourseDraft:
    """One entry of a bulk course upload, validated inside the service."""

    name: Optional[str] = None
    code: Optional[str] = None
    acronym: Optional[str] = None
    department: Optional[str] = None
    total_students: Optional[int] = None
    ta_student_ratio: Optional[int] = None
    professor: Optional[str] = None
    credits: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "code": self.code,
            "acronym": self.acronym,
            "department": self.department,
            "totalStudents": self.total_students,
            "taStudentRatio": self.ta_student_ratio,
            "professor": self.professor,
            "credits": self.credits,
        }


def _split_names(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _resolve_professor_ids(store: StoreSession, raw_names: str, label: str) -> list[int]:
    professor_ids: list[int] = []
    for professor_name in _split_names(raw_names):
        professor = store.find_professor_by_name(professor_name)
        if professor is None:
            raise CourseValidationError(f"{label}: {professor_name}")
        professor_ids.append(professor.professor_id)
    return professor_ids


def flatten_course(store: StoreSession, course: Course) -> dict[str, Any]:
    department = store.get_jm(course.department_id) if course.department_id is not None else None
    professors = store.get_professors(course.professor_ids)
    return {
        "id": course.course_id,
        "name": course.name,
        "code": course.code,
        "acronym": course.acronym,
        "department": department.department if department is not None else None,
        "credits": course.credits,
        "professor": ", ".join(professor.name for professor in professors) if professors else "N/A",
        "totalStudents": course.total_students,
        "taStudentRatio": course.ta_student_ratio,
        "taRequired": course.ta_required,
        "taAllocated": list(course.ta_allocated),
    }


class CourseService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def get_course(self, course_id: int) -> dict[str, Any]:
        with self._repository.session() as store:
            course = store.get_course(course_id)
            if course is None:
                raise CourseNotFoundError("No Course Found")
            return flatten_course(store, course)

    def list_courses(
        self,
        *,
        name: Optional[str] = None,
        code: Optional[str] = None,
        acronym: Optional[str] = None,
        department: Optional[str] = None,
        professor: Optional[str] = None,
        credits: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Filter courses; unknown department or professor names match nothing."""
        with self._repository.session() as store:
            department_id: Optional[int] = None
            if department:
                jm = store.find_jm_by_department(department)
                if jm is None:
                    return []
                department_id = jm.jm_id
            professor_ids = store.search_professor_ids(professor) if professor else None
            courses = store.list_courses(
                name=name or None,
                code=code or None,
                acronym=acronym or None,
                credits=credits,
                department_id=department_id,
                professor_ids=professor_ids,
            )
            return [flatten_course(store, course) for course in courses]

    def professor_courses(self, professor_id: int) -> list[dict[str, Any]]:
        with self._repository.session() as store:
            courses = store.list_courses(professor_ids=[professor_id])
            return [flatten_course(store, course) for course in courses]

    def add_courses(self, drafts: list[CourseDraft]) -> dict[str, Any]:
        """Upsert valid drafts by (acronym, name); report the invalid ones.

        Invalid entries never abort the batch. Valid entries are written in
        one transaction.
        """
        invalid_courses: list[dict[str, Any]] = []
        saved_ids: list[int] = []
        try:
            with self._repository.transaction() as store:
                for draft in drafts:
                    try:
                        saved_ids.append(self._upsert_draft(store, draft))
                    except CourseValidationError as exc:
                        invalid_courses.append({"course": draft.to_dict(), "message": str(exc)})
        except StoreConflictError as exc:
            raise CourseConflictError(str(exc)) from exc

        logger.info(
            "Course upload stored %s course(s), rejected %s",
            len(saved_ids),
            len(invalid_courses),
        )
        return {
            "message": "Courses added successfully",
            "courseIds": saved_ids,
            "invalidCourses": invalid_courses,
        }

    def _upsert_draft(self, store: StoreSession, draft: CourseDraft) -> int:
        if (
            not draft.name
            or not draft.code
            or not draft.acronym
            or not draft.department
            or draft.total_students is None
            or draft.ta_student_ratio is None
        ):
            raise CourseValidationError("All required fields must be provided")
        if draft.ta_student_ratio <= 0 or draft.total_students < 0:
            raise CourseValidationError("totalStudents and taStudentRatio must be positive")

        professor_ids = (
            _resolve_professor_ids(store, draft.professor, "Professor not found")
            if draft.professor
            else None
        )
        jm = store.find_jm_by_department(draft.department)
        if jm is None:
            raise CourseValidationError(f"Invalid department: {draft.department}")

        values = {
            "name": draft.name,
            "code": draft.code,
            "acronym": draft.acronym,
            "department_id": jm.jm_id,
            "total_students": draft.total_students,
            "ta_student_ratio": draft.ta_student_ratio,
            "ta_required": compute_ta_required(draft.total_students, draft.ta_student_ratio),
        }
        course_id = store.find_course_id(draft.acronym, draft.name)
        if course_id is None:
            course_id = store.insert_course(credits=draft.credits or 4, **values)
        else:
            if draft.credits is not None:
                values["credits"] = draft.credits
            store.update_course(course_id, values)
        if professor_ids is not None:
            store.set_course_professors(course_id, professor_ids)
        return course_id

    def update_course(self, course_id: int, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply a partial update; ``taRequired`` follows the count fields."""
        try:
            with self._repository.transaction() as store:
                course = store.get_course(course_id)
                if course is None:
                    raise CourseNotFoundError("Course not found")

                updates: dict[str, Any] = {
                    key: changes[key]
                    for key in ("name", "code", "acronym", "credits", "total_students", "ta_student_ratio")
                    if changes.get(key) is not None
                }
                if changes.get("department"):
                    jm = store.find_jm_by_department(changes["department"])
                    if jm is None:
                        raise CourseValidationError("Invalid Department value")
                    updates["department_id"] = jm.jm_id
                if changes.get("professor"):
                    store.set_course_professors(
                        course_id,
                        _resolve_professor_ids(store, changes["professor"], "Invalid Professor value"),
                    )
                if "total_students" in updates or "ta_student_ratio" in updates:
                    try:
                        updates["ta_required"] = compute_ta_required(
                            updates.get("total_students", course.total_students),
                            updates.get("ta_student_ratio", course.ta_student_ratio),
                        )
                    except ValueError as exc:
                        raise CourseValidationError(str(exc)) from exc

                store.update_course(course_id, updates)
                return flatten_course(store, store.get_course(course_id))
        except StoreConflictError as exc:
            raise CourseConflictError(str(exc)) from exc

    def delete_course(self, course_id: int) -> dict[str, Any]:
        """Remove a course with its feedback, returning its TAs to the pool."""
        try:
            with self._repository.transaction() as store:
                if store.get_course(course_id) is None:
                    raise CourseNotFoundError("Course not found")
                deleted_feedback = store.delete_feedback_for_course(course_id)
                released = store.release_course_students(course_id)
                store.delete_course(course_id)
        except StoreConflictError as exc:
            raise CourseConflictError(str(exc)) from exc

        logger.info(
            "Deleted course %s (released %s TA(s), removed %s feedback row(s))",
            course_id,
            len(released),
            deleted_feedback,
        )
        return {
            "message": "Course deleted successfully",
            "releasedStudents": released,
        }
