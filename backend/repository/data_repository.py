"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Sequence

from backend.domain.constraints import compute_ta_required
from backend.repository.store_session import StoreSession
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class StoreError(Exception):
    """Base failure raised by the persistence layer."""


class StoreConflictError(StoreError):
    """Raised when the write lock could not be obtained within the busy timeout."""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS JMs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        department TEXT NOT NULL UNIQUE,
        email_id TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS Professors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email_id TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS Courses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        code TEXT NOT NULL,
        acronym TEXT NOT NULL,
        department_id INTEGER,
        credits INTEGER NOT NULL DEFAULT 4,
        total_students INTEGER NOT NULL CHECK (total_students >= 0),
        ta_student_ratio INTEGER NOT NULL CHECK (ta_student_ratio > 0),
        ta_required INTEGER NOT NULL CHECK (ta_required >= 0),
        UNIQUE (acronym, name),
        FOREIGN KEY (department_id) REFERENCES JMs(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS CourseProfessors (
        course_id INTEGER NOT NULL,
        professor_id INTEGER NOT NULL,
        PRIMARY KEY (course_id, professor_id),
        FOREIGN KEY (course_id) REFERENCES Courses(id) ON DELETE CASCADE,
        FOREIGN KEY (professor_id) REFERENCES Professors(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS Students (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email_id TEXT NOT NULL,
        roll_no TEXT NOT NULL UNIQUE,
        program TEXT NOT NULL DEFAULT '',
        department TEXT NOT NULL DEFAULT '',
        ta_type TEXT NOT NULL DEFAULT '',
        allocation_status INTEGER NOT NULL DEFAULT 0 CHECK (allocation_status IN (0,1,2)),
        allocated_ta INTEGER,
        CHECK ((allocation_status = 0) = (allocated_ta IS NULL)),
        FOREIGN KEY (allocated_ta) REFERENCES Courses(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS CourseAllocations (
        course_id INTEGER NOT NULL,
        student_id INTEGER NOT NULL,
        position INTEGER NOT NULL,
        PRIMARY KEY (course_id, student_id),
        FOREIGN KEY (course_id) REFERENCES Courses(id) ON DELETE CASCADE,
        FOREIGN KEY (student_id) REFERENCES Students(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS Rounds (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        current_round INTEGER NOT NULL CHECK (current_round >= 1),
        ongoing INTEGER NOT NULL CHECK (ongoing IN (0,1)),
        start_date TEXT,
        end_date TEXT
    );
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_rounds_single_current
    ON Rounds(ongoing) WHERE ongoing = 1 AND end_date IS NULL;
    """,
    """
    CREATE TABLE IF NOT EXISTS LogEntries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER NOT NULL,
        user_email_id TEXT,
        user_role TEXT NOT NULL,
        action TEXT NOT NULL CHECK (action IN ('Allocated','Deallocated')),
        course_snapshot TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS Feedback (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        course_id INTEGER NOT NULL,
        student_id INTEGER NOT NULL,
        professor_id INTEGER NOT NULL,
        overall_grade TEXT NOT NULL DEFAULT 'S' CHECK (overall_grade IN ('S','X')),
        regularity_in_meeting TEXT NOT NULL DEFAULT 'Average',
        attendance_in_lectures TEXT NOT NULL DEFAULT 'Average',
        preparedness_for_tutorials TEXT NOT NULL DEFAULT 'Average',
        timeliness_of_tasks TEXT NOT NULL DEFAULT 'Average',
        quality_of_work TEXT NOT NULL DEFAULT 'Average',
        attitude_commitment TEXT NOT NULL DEFAULT 'Average',
        nominated_for_best_ta INTEGER NOT NULL DEFAULT 0,
        comments TEXT NOT NULL DEFAULT '',
        UNIQUE (course_id, student_id, professor_id),
        FOREIGN KEY (course_id) REFERENCES Courses(id) ON DELETE CASCADE,
        FOREIGN KEY (student_id) REFERENCES Students(id),
        FOREIGN KEY (professor_id) REFERENCES Professors(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS FeedbackStatus (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        active INTEGER NOT NULL DEFAULT 0
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_feedback_student_course
    ON Feedback(student_id, course_id);
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_students_allocated_ta
    ON Students(allocated_ta);
    """,
)


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode; transaction boundaries are issued explicitly below.
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_busy_timeout_seconds,
            isolation_level=None,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def session(self) -> Iterator[StoreSession]:
        """Plain connection for reads and single-statement writes."""
        with closing(self._connect()) as conn:
            yield StoreSession(conn)

    @contextmanager
    def transaction(self) -> Iterator[StoreSession]:
        """Atomic unit of work holding the database write lock.

        ``BEGIN IMMEDIATE`` takes the write lock before any read, so two
        writers never validate against the same snapshot. Any exception rolls
        every statement back; lock timeouts surface as ``StoreConflictError``.
        """
        with closing(self._connect()) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE;")
            except sqlite3.OperationalError as exc:
                if _is_lock_error(exc):
                    raise StoreConflictError(f"Could not acquire write lock: {exc}") from exc
                raise
            try:
                yield StoreSession(conn)
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK;")
                raise
            try:
                conn.execute("COMMIT;")
            except sqlite3.OperationalError as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK;")
                if _is_lock_error(exc):
                    raise StoreConflictError(f"Commit blocked by concurrent writer: {exc}") from exc
                raise

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with closing(self._connect()) as conn:
                conn.execute("PRAGMA journal_mode = WAL;")
                for statement in _SCHEMA_STATEMENTS:
                    conn.execute(statement)
                conn.execute("INSERT OR IGNORE INTO FeedbackStatus (id, active) VALUES (1, 0);")
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data(self) -> None:
        """Seed departments, faculty, courses, students and round 1 when empty."""
        try:
            with self.transaction() as store:
                if store.list_students():
                    logger.info("Demo data already present; skipping seed")
                    return

                departments = {
                    "CSE": store.insert_jm("CSE", "jm.cse@example.edu"),
                    "ECE": store.insert_jm("ECE", "jm.ece@example.edu"),
                    "MTH": store.insert_jm("MTH", "jm.mth@example.edu"),
                }
                professors = {
                    name: store.insert_professor(name, email)
                    for name, email in (
                        ("Anita Rao", "anita.rao@example.edu"),
                        ("Vikram Sen", "vikram.sen@example.edu"),
                        ("Meera Iyer", "meera.iyer@example.edu"),
                        ("Rahul Das", "rahul.das@example.edu"),
                    )
                }
                courses = [
                    ("Introduction to Programming", "CSE101", "IP", "CSE", 240, 30, ["Anita Rao"]),
                    ("Data Structures", "CSE102", "DSA", "CSE", 160, 40, ["Vikram Sen"]),
                    ("Operating Systems", "CSE231", "OS", "CSE", 90, 30, ["Vikram Sen", "Anita Rao"]),
                    ("Signals and Systems", "ECE250", "SNS", "ECE", 70, 35, ["Rahul Das"]),
                    ("Linear Algebra", "MTH100", "LA", "MTH", 120, 40, ["Meera Iyer"]),
                ]
                for name, code, acronym, department, total, ratio, faculty in courses:
                    course_id = store.insert_course(
                        name=name,
                        code=code,
                        acronym=acronym,
                        department_id=departments[department],
                        credits=4,
                        total_students=total,
                        ta_student_ratio=ratio,
                        ta_required=compute_ta_required(total, ratio),
                    )
                    store.set_course_professors(course_id, [professors[item] for item in faculty])

                programs = ("B.Tech", "M.Tech", "PhD")
                for index in range(1, 13):
                    program = programs[index % len(programs)]
                    store.insert_student(
                        name=f"Student {index:02d}",
                        email_id=f"student{index:02d}@example.edu",
                        roll_no=f"2024{index:03d}",
                        program=program,
                        department=("CSE", "ECE", "MTH")[index % 3],
                        ta_type="Credit" if program == "B.Tech" else "Paid",
                    )
                store.insert_round(1, utc_now())
            logger.info("Demo seed completed")
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo data seeding failed: {exc}") from exc

    def create_jm(self, department: str, email_id: str) -> int:
        with self.transaction() as store:
            return store.insert_jm(department, email_id)

    def create_professor(self, name: str, email_id: str) -> int:
        with self.transaction() as store:
            return store.insert_professor(name, email_id)

    def create_student(
        self,
        name: str,
        email_id: str,
        roll_no: str,
        program: str = "B.Tech",
        department: str = "CSE",
        ta_type: str = "Credit",
    ) -> int:
        with self.transaction() as store:
            return store.insert_student(name, email_id, roll_no, program, department, ta_type)

    def create_course(
        self,
        name: str,
        code: str,
        acronym: str,
        department_id: Optional[int],
        total_students: int,
        ta_student_ratio: int,
        professor_ids: Sequence[int] = (),
        credits: int = 4,
    ) -> int:
        """Insert a course with its derived TA requirement and faculty links."""
        with self.transaction() as store:
            course_id = store.insert_course(
                name=name,
                code=code,
                acronym=acronym,
                department_id=department_id,
                credits=credits,
                total_students=total_students,
                ta_student_ratio=ta_student_ratio,
                ta_required=compute_ta_required(total_students, ta_student_ratio),
            )
            store.set_course_professors(course_id, professor_ids)
            return course_id
