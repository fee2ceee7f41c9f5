"""Row-level reads and writes bound to a single SQLite connection."""

from __future__ import annotations

import json
import sqlite3
from typing import Any, Iterable, Optional, Sequence

from backend.domain.models import (
    JM,
    AllocationStatus,
    Course,
    Feedback,
    LogEntry,
    Professor,
    Round,
    Student,
)


_STUDENT_COLUMNS = """
    id, name, email_id, roll_no, program, department, ta_type,
    allocation_status, allocated_ta
"""

_COURSE_COLUMNS = """
    id, name, code, acronym, department_id, credits, total_students,
    ta_student_ratio, ta_required
"""

_COURSE_COLUMNS_ALIASED = """
    c.id, c.name, c.code, c.acronym, c.department_id, c.credits, c.total_students,
    c.ta_student_ratio, c.ta_required
"""

_FEEDBACK_COLUMNS = """
    id, course_id, student_id, professor_id, overall_grade,
    regularity_in_meeting, attendance_in_lectures, preparedness_for_tutorials,
    timeliness_of_tasks, quality_of_work, attitude_commitment,
    nominated_for_best_ta, comments
"""

COURSE_UPDATABLE_COLUMNS = (
    "name",
    "code",
    "acronym",
    "department_id",
    "credits",
    "total_students",
    "ta_student_ratio",
    "ta_required",
)

FEEDBACK_UPDATABLE_COLUMNS = (
    "overall_grade",
    "regularity_in_meeting",
    "attendance_in_lectures",
    "preparedness_for_tutorials",
    "timeliness_of_tasks",
    "quality_of_work",
    "attitude_commitment",
    "nominated_for_best_ta",
    "comments",
)


def _student_from_row(row: sqlite3.Row) -> Student:
    return Student(
        student_id=int(row["id"]),
        name=str(row["name"]),
        email_id=str(row["email_id"]),
        roll_no=str(row["roll_no"]),
        program=str(row["program"]),
        department=str(row["department"]),
        ta_type=str(row["ta_type"]),
        allocation_status=AllocationStatus(int(row["allocation_status"])),
        allocated_ta=int(row["allocated_ta"]) if row["allocated_ta"] is not None else None,
    )


def _round_from_row(row: sqlite3.Row) -> Round:
    return Round(
        round_id=int(row["id"]),
        current_round=int(row["current_round"]),
        ongoing=bool(row["ongoing"]),
        start_date=row["start_date"],
        end_date=row["end_date"],
    )


def _feedback_from_row(row: sqlite3.Row) -> Feedback:
    return Feedback(
        feedback_id=int(row["id"]),
        course_id=int(row["course_id"]),
        student_id=int(row["student_id"]),
        professor_id=int(row["professor_id"]),
        overall_grade=str(row["overall_grade"]),
        regularity_in_meeting=str(row["regularity_in_meeting"]),
        attendance_in_lectures=str(row["attendance_in_lectures"]),
        preparedness_for_tutorials=str(row["preparedness_for_tutorials"]),
        timeliness_of_tasks=str(row["timeliness_of_tasks"]),
        quality_of_work=str(row["quality_of_work"]),
        attitude_commitment=str(row["attitude_commitment"]),
        nominated_for_best_ta=bool(row["nominated_for_best_ta"]),
        comments=str(row["comments"] or ""),
    )


def _log_entry_from_row(row: sqlite3.Row) -> LogEntry:
    return LogEntry(
        log_id=int(row["id"]),
        student_id=int(row["student_id"]),
        user_email_id=row["user_email_id"],
        user_role=str(row["user_role"]),
        action=str(row["action"]),
        course=json.loads(row["course_snapshot"]),
        created_at=str(row["created_at"]),
    )


class StoreSession:
    """Query surface handed out by ``DataRepository.session``/``transaction``.

    The session never commits on its own; the owning context manager decides
    whether its writes become visible.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection

    def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        return self._conn.execute(sql, tuple(params)).fetchone()

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        return self._conn.execute(sql, tuple(params)).fetchall()

    # --- Rounds ---

    def find_current_round(self) -> Optional[Round]:
        row = self._fetchone(
            """
            SELECT id, current_round, ongoing, start_date, end_date
            FROM Rounds
            WHERE ongoing = 1 AND end_date IS NULL
            ORDER BY id DESC
            LIMIT 1;
            """
        )
        return _round_from_row(row) if row is not None else None

    def list_rounds(self) -> list[Round]:
        rows = self._fetchall(
            "SELECT id, current_round, ongoing, start_date, end_date FROM Rounds ORDER BY id ASC;"
        )
        return [_round_from_row(row) for row in rows]

    def latest_round_number(self) -> int:
        row = self._fetchone("SELECT MAX(current_round) AS latest FROM Rounds;")
        if row is None or row["latest"] is None:
            return 0
        return int(row["latest"])

    def insert_round(self, round_number: int, started_at: str) -> Round:
        cursor = self._conn.execute(
            """
            INSERT INTO Rounds (current_round, ongoing, start_date)
            VALUES (?, 1, ?);
            """,
            (round_number, started_at),
        )
        return Round(
            round_id=int(cursor.lastrowid),
            current_round=round_number,
            ongoing=True,
            start_date=started_at,
            end_date=None,
        )

    def close_round(self, round_id: int, ended_at: str) -> None:
        self._conn.execute(
            "UPDATE Rounds SET ongoing = 0, end_date = ? WHERE id = ?;",
            (ended_at, round_id),
        )

    # --- People ---

    def get_student(self, student_id: int) -> Optional[Student]:
        row = self._fetchone(
            f"SELECT {_STUDENT_COLUMNS} FROM Students WHERE id = ?;",
            (student_id,),
        )
        return _student_from_row(row) if row is not None else None

    def get_students(self, student_ids: Iterable[int]) -> dict[int, Student]:
        ids = sorted({int(student_id) for student_id in student_ids})
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        rows = self._fetchall(
            f"SELECT {_STUDENT_COLUMNS} FROM Students WHERE id IN ({placeholders});",
            ids,
        )
        return {int(row["id"]): _student_from_row(row) for row in rows}

    def list_students(self) -> list[Student]:
        rows = self._fetchall(f"SELECT {_STUDENT_COLUMNS} FROM Students ORDER BY id ASC;")
        return [_student_from_row(row) for row in rows]

    def insert_student(
        self,
        name: str,
        email_id: str,
        roll_no: str,
        program: str,
        department: str,
        ta_type: str,
    ) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO Students (name, email_id, roll_no, program, department, ta_type)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (name, email_id, roll_no, program, department, ta_type),
        )
        return int(cursor.lastrowid)

    def set_student_allocation(
        self,
        student_id: int,
        course_id: Optional[int],
        status: AllocationStatus,
    ) -> None:
        self._conn.execute(
            "UPDATE Students SET allocated_ta = ?, allocation_status = ? WHERE id = ?;",
            (course_id, int(status), student_id),
        )

    def get_professor(self, professor_id: int) -> Optional[Professor]:
        row = self._fetchone(
            "SELECT id, name, email_id FROM Professors WHERE id = ?;",
            (professor_id,),
        )
        if row is None:
            return None
        return Professor(
            professor_id=int(row["id"]),
            name=str(row["name"]),
            email_id=str(row["email_id"]),
        )

    def get_professors(self, professor_ids: Iterable[int]) -> list[Professor]:
        ids = sorted({int(professor_id) for professor_id in professor_ids})
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        rows = self._fetchall(
            f"SELECT id, name, email_id FROM Professors WHERE id IN ({placeholders}) ORDER BY id;",
            ids,
        )
        return [
            Professor(
                professor_id=int(row["id"]),
                name=str(row["name"]),
                email_id=str(row["email_id"]),
            )
            for row in rows
        ]

    def find_professor_by_name(self, name: str) -> Optional[Professor]:
        row = self._fetchone(
            "SELECT id, name, email_id FROM Professors WHERE name = ? ORDER BY id LIMIT 1;",
            (name,),
        )
        if row is None:
            return None
        return Professor(
            professor_id=int(row["id"]),
            name=str(row["name"]),
            email_id=str(row["email_id"]),
        )

    def search_professor_ids(self, name_fragment: str) -> list[int]:
        rows = self._fetchall(
            "SELECT id FROM Professors WHERE name LIKE ? ORDER BY id;",
            (f"%{name_fragment}%",),
        )
        return [int(row["id"]) for row in rows]

    def insert_professor(self, name: str, email_id: str) -> int:
        cursor = self._conn.execute(
            "INSERT INTO Professors (name, email_id) VALUES (?, ?);",
            (name, email_id),
        )
        return int(cursor.lastrowid)

    def get_jm(self, jm_id: int) -> Optional[JM]:
        row = self._fetchone("SELECT id, department, email_id FROM JMs WHERE id = ?;", (jm_id,))
        if row is None:
            return None
        return JM(jm_id=int(row["id"]), department=str(row["department"]), email_id=str(row["email_id"]))

    def find_jm_by_department(self, department: str) -> Optional[JM]:
        row = self._fetchone(
            "SELECT id, department, email_id FROM JMs WHERE department = ?;",
            (department,),
        )
        if row is None:
            return None
        return JM(jm_id=int(row["id"]), department=str(row["department"]), email_id=str(row["email_id"]))

    def insert_jm(self, department: str, email_id: str) -> int:
        cursor = self._conn.execute(
            "INSERT INTO JMs (department, email_id) VALUES (?, ?);",
            (department, email_id),
        )
        return int(cursor.lastrowid)

    # --- Courses ---

    def _course_from_row(self, row: sqlite3.Row) -> Course:
        course_id = int(row["id"])
        return Course(
            course_id=course_id,
            name=str(row["name"]),
            code=str(row["code"]),
            acronym=str(row["acronym"]),
            department_id=int(row["department_id"]) if row["department_id"] is not None else None,
            credits=int(row["credits"]),
            total_students=int(row["total_students"]),
            ta_student_ratio=int(row["ta_student_ratio"]),
            ta_required=int(row["ta_required"]),
            ta_allocated=self.list_course_allocation(course_id),
            professor_ids=self.list_course_professor_ids(course_id),
        )

    def get_course(self, course_id: int) -> Optional[Course]:
        row = self._fetchone(
            f"SELECT {_COURSE_COLUMNS} FROM Courses WHERE id = ?;",
            (course_id,),
        )
        return self._course_from_row(row) if row is not None else None

    def list_courses(
        self,
        *,
        name: Optional[str] = None,
        code: Optional[str] = None,
        acronym: Optional[str] = None,
        credits: Optional[int] = None,
        department_id: Optional[int] = None,
        professor_ids: Optional[Sequence[int]] = None,
    ) -> list[Course]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("name", name),
            ("code", code),
            ("acronym", acronym),
            ("credits", credits),
            ("department_id", department_id),
        ):
            if value is not None:
                clauses.append(f"c.{column} = ?")
                params.append(value)
        if professor_ids is not None:
            if not professor_ids:
                return []
            placeholders = ",".join("?" for _ in professor_ids)
            clauses.append(
                f"c.id IN (SELECT course_id FROM CourseProfessors WHERE professor_id IN ({placeholders}))"
            )
            params.extend(professor_ids)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(
            f"""
            SELECT {_COURSE_COLUMNS_ALIASED}
            FROM Courses AS c
            {where}
            ORDER BY c.id ASC;
            """,
            params,
        )
        return [self._course_from_row(row) for row in rows]

    def list_allocated_courses(self) -> list[Course]:
        rows = self._fetchall(
            f"""
            SELECT {_COURSE_COLUMNS}
            FROM Courses
            WHERE id IN (SELECT DISTINCT course_id FROM CourseAllocations)
            ORDER BY id ASC;
            """
        )
        return [self._course_from_row(row) for row in rows]

    def find_course_id(self, acronym: str, name: str) -> Optional[int]:
        row = self._fetchone(
            "SELECT id FROM Courses WHERE acronym = ? AND name = ?;",
            (acronym, name),
        )
        return int(row["id"]) if row is not None else None

    def insert_course(
        self,
        *,
        name: str,
        code: str,
        acronym: str,
        department_id: Optional[int],
        credits: int,
        total_students: int,
        ta_student_ratio: int,
        ta_required: int,
    ) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO Courses (
                name, code, acronym, department_id, credits,
                total_students, ta_student_ratio, ta_required
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                name,
                code,
                acronym,
                department_id,
                credits,
                total_students,
                ta_student_ratio,
                ta_required,
            ),
        )
        return int(cursor.lastrowid)

    def update_course(self, course_id: int, changes: dict[str, Any]) -> None:
        columns = [column for column in COURSE_UPDATABLE_COLUMNS if column in changes]
        if not columns:
            return
        assignments = ", ".join(f"{column} = ?" for column in columns)
        self._conn.execute(
            f"UPDATE Courses SET {assignments} WHERE id = ?;",
            (*(changes[column] for column in columns), course_id),
        )

    def delete_course(self, course_id: int) -> None:
        self._conn.execute("DELETE FROM Courses WHERE id = ?;", (course_id,))

    def list_course_professor_ids(self, course_id: int) -> tuple[int, ...]:
        rows = self._fetchall(
            "SELECT professor_id FROM CourseProfessors WHERE course_id = ? ORDER BY professor_id;",
            (course_id,),
        )
        return tuple(int(row["professor_id"]) for row in rows)

    def set_course_professors(self, course_id: int, professor_ids: Sequence[int]) -> None:
        self._conn.execute("DELETE FROM CourseProfessors WHERE course_id = ?;", (course_id,))
        self._conn.executemany(
            "INSERT INTO CourseProfessors (course_id, professor_id) VALUES (?, ?);",
            [(course_id, professor_id) for professor_id in dict.fromkeys(professor_ids)],
        )

    # --- TA membership ---

    def list_course_allocation(self, course_id: int) -> tuple[int, ...]:
        rows = self._fetchall(
            """
            SELECT student_id
            FROM CourseAllocations
            WHERE course_id = ?
            ORDER BY position ASC;
            """,
            (course_id,),
        )
        return tuple(int(row["student_id"]) for row in rows)

    def append_course_allocation(self, course_id: int, student_id: int) -> None:
        self._conn.execute(
            """
            INSERT INTO CourseAllocations (course_id, student_id, position)
            SELECT ?, ?, COALESCE(MAX(position), 0) + 1
            FROM CourseAllocations
            WHERE course_id = ?;
            """,
            (course_id, student_id, course_id),
        )

    def remove_course_allocation(self, course_id: int, student_id: int) -> None:
        self._conn.execute(
            "DELETE FROM CourseAllocations WHERE course_id = ? AND student_id = ?;",
            (course_id, student_id),
        )

    def release_course_students(self, course_id: int) -> list[int]:
        """Detach every TA from a course and mark them unallocated."""
        student_ids = list(self.list_course_allocation(course_id))
        self._conn.execute("DELETE FROM CourseAllocations WHERE course_id = ?;", (course_id,))
        self._conn.execute(
            """
            UPDATE Students
            SET allocated_ta = NULL, allocation_status = 0
            WHERE allocated_ta = ?;
            """,
            (course_id,),
        )
        return student_ids

    # --- Audit log ---

    def insert_log_entry(
        self,
        *,
        student_id: int,
        user_email_id: Optional[str],
        user_role: str,
        action: str,
        course_snapshot: dict[str, Any],
        created_at: str,
    ) -> LogEntry:
        cursor = self._conn.execute(
            """
            INSERT INTO LogEntries (
                student_id, user_email_id, user_role, action, course_snapshot, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (
                student_id,
                user_email_id,
                user_role,
                action,
                json.dumps(course_snapshot, sort_keys=True),
                created_at,
            ),
        )
        return LogEntry(
            log_id=int(cursor.lastrowid),
            student_id=student_id,
            user_email_id=user_email_id,
            user_role=user_role,
            action=action,
            course=course_snapshot,
            created_at=created_at,
        )

    def list_log_entries(self) -> list[LogEntry]:
        rows = self._fetchall(
            """
            SELECT id, student_id, user_email_id, user_role, action, course_snapshot, created_at
            FROM LogEntries
            ORDER BY id ASC;
            """
        )
        return [_log_entry_from_row(row) for row in rows]

    def count_log_entries(self) -> int:
        return int(self._fetchone("SELECT COUNT(*) AS count FROM LogEntries;")["count"])

    # --- Feedback ---

    def insert_feedback(self, feedback: Feedback) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO Feedback (
                course_id, student_id, professor_id, overall_grade,
                regularity_in_meeting, attendance_in_lectures, preparedness_for_tutorials,
                timeliness_of_tasks, quality_of_work, attitude_commitment,
                nominated_for_best_ta, comments
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                feedback.course_id,
                feedback.student_id,
                feedback.professor_id,
                feedback.overall_grade,
                feedback.regularity_in_meeting,
                feedback.attendance_in_lectures,
                feedback.preparedness_for_tutorials,
                feedback.timeliness_of_tasks,
                feedback.quality_of_work,
                feedback.attitude_commitment,
                int(feedback.nominated_for_best_ta),
                feedback.comments,
            ),
        )
        return int(cursor.lastrowid)

    def get_feedback(self, feedback_id: int) -> Optional[Feedback]:
        row = self._fetchone(
            f"SELECT {_FEEDBACK_COLUMNS} FROM Feedback WHERE id = ?;",
            (feedback_id,),
        )
        return _feedback_from_row(row) if row is not None else None

    def find_feedback(self, professor_id: int, course_id: int, student_id: int) -> Optional[Feedback]:
        row = self._fetchone(
            f"""
            SELECT {_FEEDBACK_COLUMNS}
            FROM Feedback
            WHERE professor_id = ? AND course_id = ? AND student_id = ?;
            """,
            (professor_id, course_id, student_id),
        )
        return _feedback_from_row(row) if row is not None else None

    def list_feedback(self, *, student_id: Optional[int] = None) -> list[Feedback]:
        if student_id is None:
            rows = self._fetchall(f"SELECT {_FEEDBACK_COLUMNS} FROM Feedback ORDER BY id ASC;")
        else:
            rows = self._fetchall(
                f"SELECT {_FEEDBACK_COLUMNS} FROM Feedback WHERE student_id = ? ORDER BY id ASC;",
                (student_id,),
            )
        return [_feedback_from_row(row) for row in rows]

    def update_feedback(self, feedback_id: int, changes: dict[str, Any]) -> None:
        columns = [column for column in FEEDBACK_UPDATABLE_COLUMNS if column in changes]
        if not columns:
            return
        values = [
            int(changes[column]) if column == "nominated_for_best_ta" else changes[column]
            for column in columns
        ]
        assignments = ", ".join(f"{column} = ?" for column in columns)
        self._conn.execute(
            f"UPDATE Feedback SET {assignments} WHERE id = ?;",
            (*values, feedback_id),
        )

    def delete_feedback_for(self, student_id: int, course_id: int) -> int:
        cursor = self._conn.execute(
            "DELETE FROM Feedback WHERE student_id = ? AND course_id = ?;",
            (student_id, course_id),
        )
        return int(cursor.rowcount)

    def delete_feedback_for_course(self, course_id: int) -> int:
        cursor = self._conn.execute("DELETE FROM Feedback WHERE course_id = ?;", (course_id,))
        return int(cursor.rowcount)

    def delete_all_feedback(self) -> int:
        cursor = self._conn.execute("DELETE FROM Feedback;")
        return int(cursor.rowcount)

    def get_feedback_active(self) -> Optional[bool]:
        row = self._fetchone("SELECT active FROM FeedbackStatus WHERE id = 1;")
        return bool(row["active"]) if row is not None else None

    def set_feedback_active(self, active: bool) -> None:
        self._conn.execute(
            """
            INSERT INTO FeedbackStatus (id, active) VALUES (1, ?)
            ON CONFLICT(id) DO UPDATE SET active = excluded.active;
            """,
            (int(active),),
        )
