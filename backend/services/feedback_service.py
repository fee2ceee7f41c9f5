"""Post-allocation feedback from professors about their TAs."""

from __future__ import annotations

from typing import Any, Optional

import pandas as pd

from backend.domain.models import GRADE_CHOICES, RATING_CHOICES, RATING_FIELDS, Feedback
from backend.repository.data_repository import DataRepository, StoreConflictError
from backend.repository.store_session import StoreSession
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

EXPORT_COLUMNS = {
    "professor_name": "Professor Name",
    "professor_email": "Professor Email",
    "student_roll_no": "Student Roll No.",
    "student_name": "Student Name",
    "course_name": "Course Name",
    "overall_grade": "Overall Grade",
    "regularity_in_meeting": "Regularity in Meeting",
    "attendance_in_lectures": "Attendance in Lectures",
    "preparedness_for_tutorials": "Preparedness for Tutorials",
    "timeliness_of_tasks": "Timeliness of Tasks",
    "quality_of_work": "Quality of Work",
    "attitude_commitment": "Attitude and Commitment",
    "nominated_for_best_ta": "Nominated for Best TA",
    "comments": "Comments",
}


class FeedbackError(Exception):
    """Base failure for feedback workflow operations."""


class FeedbackNotFoundError(FeedbackError):
    """Raised when a feedback id does not exist."""


class FeedbackClosedError(FeedbackError):
    """Raised when editing while the feedback window is closed."""


class FeedbackValidationError(FeedbackError):
    """Raised when a grade or rating value is outside its allowed set."""


class NoSubmittedFeedbackError(FeedbackError):
    """Raised when an export finds nothing beyond untouched placeholders."""


class FeedbackConflictError(FeedbackError):
    """Raised when another writer kept the store locked."""


def _validate_changes(changes: dict[str, Any]) -> None:
    grade = changes.get("overall_grade")
    if grade is not None and grade not in GRADE_CHOICES:
        raise FeedbackValidationError(f"overall_grade must be one of {', '.join(GRADE_CHOICES)}")
    for name in RATING_FIELDS:
        value = changes.get(name)
        if value is not None and value not in RATING_CHOICES:
            raise FeedbackValidationError(f"{name} must be one of {', '.join(RATING_CHOICES)}")


def _feedback_view(store: StoreSession, feedback: Feedback) -> dict[str, Any]:
    """Feedback with its course, student and professor expanded for display."""
    course = store.get_course(feedback.course_id)
    student = store.get_student(feedback.student_id)
    professor = store.get_professor(feedback.professor_id)
    return {
        "id": feedback.feedback_id,
        "course": (
            {"id": course.course_id, "name": course.name, "code": course.code} if course else None
        ),
        "student": (
            {"id": student.student_id, "name": student.name, "rollNo": student.roll_no}
            if student
            else None
        ),
        "professor": (
            {"id": professor.professor_id, "name": professor.name, "emailId": professor.email_id}
            if professor
            else None
        ),
        "overallGrade": feedback.overall_grade,
        "regularityInMeeting": feedback.regularity_in_meeting,
        "attendanceInLectures": feedback.attendance_in_lectures,
        "preparednessForTutorials": feedback.preparedness_for_tutorials,
        "timelinessOfTasks": feedback.timeliness_of_tasks,
        "qualityOfWork": feedback.quality_of_work,
        "attitudeCommitment": feedback.attitude_commitment,
        "nominatedForBestTA": feedback.nominated_for_best_ta,
        "comments": feedback.comments,
    }


class FeedbackService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def feedback_status(self) -> bool:
        with self._repository.session() as store:
            return bool(store.get_feedback_active())

    def start_feedback(self) -> int:
        """Open the window and rebuild placeholders for every course professor and TA."""
        created = 0
        try:
            with self._repository.transaction() as store:
                store.set_feedback_active(True)
                store.delete_all_feedback()
                for course in store.list_allocated_courses():
                    for professor_id in course.professor_ids:
                        for student_id in course.ta_allocated:
                            store.insert_feedback(
                                Feedback(
                                    feedback_id=None,
                                    course_id=course.course_id,
                                    student_id=student_id,
                                    professor_id=professor_id,
                                )
                            )
                            created += 1
        except StoreConflictError as exc:
            raise FeedbackConflictError(str(exc)) from exc
        logger.info("Feedback window opened with %s placeholder(s)", created)
        return created

    def close_feedback(self) -> None:
        with self._repository.session() as store:
            store.set_feedback_active(False)
        logger.info("Feedback window closed")

    def edit_feedback(self, feedback_id: int, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply the supplied fields only; ``None`` means leave unchanged."""
        updates = {key: value for key, value in changes.items() if value is not None}
        _validate_changes(updates)
        try:
            with self._repository.transaction() as store:
                if not store.get_feedback_active():
                    raise FeedbackClosedError("Feedback form is closed. Cannot edit feedback.")
                feedback = store.get_feedback(feedback_id)
                if feedback is None:
                    raise FeedbackNotFoundError("Feedback not found")
                store.update_feedback(feedback_id, updates)
                return _feedback_view(store, store.get_feedback(feedback_id))
        except StoreConflictError as exc:
            raise FeedbackConflictError(str(exc)) from exc

    def list_feedbacks(self) -> list[dict[str, Any]]:
        with self._repository.session() as store:
            return [_feedback_view(store, feedback) for feedback in store.list_feedback()]

    def feedbacks_for_professor(self, professor_id: int) -> list[dict[str, Any]]:
        """Stored feedback per (course, TA) taught by the professor.

        Pairs without a stored row get an unsaved placeholder (``id`` None)
        so the professor still sees every TA.
        """
        rows: list[dict[str, Any]] = []
        with self._repository.session() as store:
            for course in store.list_courses(professor_ids=[professor_id]):
                for student_id in course.ta_allocated:
                    feedback = store.find_feedback(professor_id, course.course_id, student_id)
                    if feedback is None:
                        feedback = Feedback(
                            feedback_id=None,
                            course_id=course.course_id,
                            student_id=student_id,
                            professor_id=professor_id,
                        )
                    rows.append(_feedback_view(store, feedback))
        return rows

    def export_feedbacks(self) -> bytes:
        """CSV of every feedback that differs from its placeholder defaults."""
        records: list[dict[str, Any]] = []
        with self._repository.session() as store:
            for feedback in store.list_feedback():
                if feedback.is_placeholder():
                    continue
                view = _feedback_view(store, feedback)
                professor = view["professor"] or {}
                student = view["student"] or {}
                course = view["course"] or {}
                records.append(
                    {
                        "professor_name": professor.get("name") or "N/A",
                        "professor_email": professor.get("emailId") or "N/A",
                        "student_roll_no": student.get("rollNo") or "N/A",
                        "student_name": student.get("name") or "N/A",
                        "course_name": course.get("name") or "N/A",
                        **{
                            name: getattr(feedback, name) or "N/A"
                            for name in ("overall_grade", *RATING_FIELDS)
                        },
                        "nominated_for_best_ta": "Yes" if feedback.nominated_for_best_ta else "No",
                        "comments": feedback.comments or "N/A",
                    }
                )

        if not records:
            raise NoSubmittedFeedbackError("No submitted feedbacks available for download.")

        frame = pd.DataFrame.from_records(records, columns=list(EXPORT_COLUMNS))
        frame = frame.rename(columns=EXPORT_COLUMNS)
        logger.info("Exported %s submitted feedback row(s)", len(frame))
        return frame.to_csv(index=False).encode("utf-8")
