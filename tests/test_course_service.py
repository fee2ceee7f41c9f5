from __future__ import annotations

from dataclasses import replace

import pytest

from backend.domain.models import AdminActor, AllocationStatus
from backend.repository.data_repository import DataRepository
from backend.services.allocation_service import AllocationService
from backend.services.course_service import (
    CourseDraft,
    CourseNotFoundError,
    CourseService,
    CourseValidationError,
)
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, smtp_host=None)


def _build_services(tmp_path, filename: str) -> tuple[DataRepository, CourseService, AllocationService]:
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_data()
    return (
        repository,
        CourseService(repository=repository, settings=settings),
        AllocationService(repository=repository, settings=settings),
    )


def _course_id(repository: DataRepository, acronym: str) -> int:
    with repository.session() as store:
        return store.list_courses(acronym=acronym)[0].course_id


def test_get_course_flattens_references(tmp_path):
    repository, service, _ = _build_services(tmp_path, "course_get.db")

    course = service.get_course(_course_id(repository, "OS"))

    assert course["department"] == "CSE"
    assert course["professor"] == "Anita Rao, Vikram Sen"
    assert course["taRequired"] == 3
    assert course["taAllocated"] == []

    with pytest.raises(CourseNotFoundError, match="No Course Found"):
        service.get_course(9999)


def test_list_courses_filters(tmp_path):
    _, service, _ = _build_services(tmp_path, "course_filters.db")

    assert [course["acronym"] for course in service.list_courses(department="ECE")] == ["SNS"]
    assert {course["acronym"] for course in service.list_courses(professor="Vikram")} == {"DSA", "OS"}
    assert service.list_courses(department="PHY") == []
    assert service.list_courses(professor="Nobody") == []
    assert len(service.list_courses()) == 5


def test_add_courses_upserts_and_reports_invalid_rows(tmp_path):
    repository, service, _ = _build_services(tmp_path, "course_upload.db")

    result = service.add_courses(
        [
            CourseDraft(
                name="Data Structures",
                code="CSE102",
                acronym="DSA",
                department="CSE",
                total_students=200,
                ta_student_ratio=40,
            ),
            CourseDraft(
                name="Compilers",
                code="CSE401",
                acronym="CC",
                department="CSE",
                total_students=30,
                ta_student_ratio=15,
                professor="Anita Rao, Rahul Das",
            ),
            CourseDraft(
                name="Quantum",
                code="PHY101",
                acronym="QM",
                department="PHY",
                total_students=30,
                ta_student_ratio=15,
            ),
            CourseDraft(name="Partial"),
            CourseDraft(
                name="Ghost",
                code="CSE999",
                acronym="GH",
                department="CSE",
                total_students=10,
                ta_student_ratio=5,
                professor="Nobody Known",
            ),
        ]
    )

    assert len(result["courseIds"]) == 2
    assert result["courseIds"][0] == _course_id(repository, "DSA")
    assert [item["message"] for item in result["invalidCourses"]] == [
        "Invalid department: PHY",
        "All required fields must be provided",
        "Professor not found: Nobody Known",
    ]

    updated = service.get_course(_course_id(repository, "DSA"))
    assert updated["totalStudents"] == 200
    assert updated["taRequired"] == 5
    assert updated["professor"] == "Vikram Sen"

    compilers = service.get_course(_course_id(repository, "CC"))
    assert compilers["professor"] == "Anita Rao, Rahul Das"
    assert compilers["taRequired"] == 2
    assert len(service.list_courses()) == 6


def test_add_course_with_zero_enrolment(tmp_path):
    repository, service, _ = _build_services(tmp_path, "course_zero.db")

    result = service.add_courses(
        [
            CourseDraft(
                name="Research Seminar",
                code="CSE599",
                acronym="RS",
                department="CSE",
                total_students=0,
                ta_student_ratio=20,
            ),
            CourseDraft(
                name="Broken Ratio",
                code="CSE598",
                acronym="BR",
                department="CSE",
                total_students=10,
                ta_student_ratio=0,
            ),
        ]
    )

    assert result["courseIds"] == [_course_id(repository, "RS")]
    assert [item["message"] for item in result["invalidCourses"]] == [
        "totalStudents and taStudentRatio must be positive",
    ]
    seminar = service.get_course(result["courseIds"][0])
    assert seminar["totalStudents"] == 0
    assert seminar["taRequired"] == 0


def test_update_course_recomputes_requirement(tmp_path):
    repository, service, _ = _build_services(tmp_path, "course_update.db")
    course_id = _course_id(repository, "IP")

    updated = service.update_course(
        course_id,
        {"ta_student_ratio": 60, "professor": "Meera Iyer", "department": "MTH"},
    )

    assert updated["taRequired"] == 4
    assert updated["professor"] == "Meera Iyer"
    assert updated["department"] == "MTH"

    with pytest.raises(CourseValidationError, match="Invalid Department value"):
        service.update_course(course_id, {"department": "PHY"})
    with pytest.raises(CourseValidationError, match="Invalid Professor value: Nobody"):
        service.update_course(course_id, {"professor": "Nobody"})
    with pytest.raises(CourseNotFoundError):
        service.update_course(9999, {"name": "Missing"})


def test_delete_course_releases_its_tas(tmp_path):
    repository, service, allocation_service = _build_services(tmp_path, "course_delete.db")
    course_id = _course_id(repository, "DSA")
    with repository.session() as store:
        student_id = store.list_students()[0].student_id
    allocation_service.allocate(student_id, course_id, AdminActor())

    result = service.delete_course(course_id)

    assert result["releasedStudents"] == [student_id]
    with repository.session() as store:
        student = store.get_student(student_id)
        assert student.allocation_status == AllocationStatus.UNALLOCATED
        assert student.allocated_ta is None
        assert store.list_feedback(student_id=student_id) == []
        assert store.get_course(course_id) is None

    with pytest.raises(CourseNotFoundError):
        service.delete_course(course_id)
