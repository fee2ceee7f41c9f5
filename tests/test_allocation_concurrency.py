from __future__ import annotations

import threading
from dataclasses import replace

from backend.domain.models import AdminActor, JMActor
from backend.repository.data_repository import DataRepository, utc_now
from backend.services.allocation_service import AllocationService, CapacityExceededError
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        smtp_host=None,
        database_busy_timeout_seconds=10.0,
        transaction_max_attempts=5,
        transaction_retry_backoff_seconds=0.01,
        seed_demo_data=False,
    )


def _seed_round(repository: DataRepository, round_number: int) -> None:
    with repository.transaction() as store:
        for number in range(1, round_number + 1):
            created = store.insert_round(number, utc_now())
            if number < round_number:
                store.close_round(created.round_id, utc_now())


def _race(service: AllocationService, student_ids, course_id: int, actor) -> tuple[list, list]:
    """Fire one allocate per student at the same instant."""
    barrier = threading.Barrier(len(student_ids))
    successes = []
    failures = []
    lock = threading.Lock()

    def worker(student_id: int) -> None:
        barrier.wait()
        try:
            outcome = service.allocate(student_id, course_id, actor)
            with lock:
                successes.append(outcome.student.student_id)
        except CapacityExceededError as exc:
            with lock:
                failures.append(exc)

    threads = [threading.Thread(target=worker, args=(student_id,)) for student_id in student_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return successes, failures


def test_concurrent_allocations_never_exceed_round_one_cap(tmp_path):
    settings = _build_test_settings(tmp_path, "concurrent_round_one.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    jm_id = repository.create_jm("CSE", "jm.cse@example.edu")
    course_id = repository.create_course("Compilers", "CSE401", "CC", jm_id, 60, 30)
    student_ids = [
        repository.create_student(f"Student {index}", f"s{index}@example.edu", f"R{index:03d}")
        for index in range(2)
    ]
    _seed_round(repository, 1)
    service = AllocationService(repository=repository, settings=settings)

    successes, failures = _race(service, student_ids, course_id, AdminActor())

    assert len(successes) == 1
    assert len(failures) == 1
    with repository.session() as store:
        course = store.get_course(course_id)
        assert course.ta_allocated == tuple(successes)
        assert store.count_log_entries() == 1


def test_concurrent_allocations_fill_later_round_exactly(tmp_path):
    settings = _build_test_settings(tmp_path, "concurrent_round_two.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    jm_id = repository.create_jm("CSE", "jm.cse@example.edu")
    # 90 students at ratio 30 -> 3 TAs required.
    course_id = repository.create_course("Networks", "CSE320", "CN", jm_id, 90, 30)
    student_ids = [
        repository.create_student(f"Student {index}", f"s{index}@example.edu", f"R{index:03d}")
        for index in range(6)
    ]
    _seed_round(repository, 2)
    service = AllocationService(repository=repository, settings=settings)

    successes, failures = _race(service, student_ids, course_id, JMActor(jm_id))

    assert len(successes) == 3
    assert len(failures) == 3
    with repository.session() as store:
        course = store.get_course(course_id)
        assert sorted(course.ta_allocated) == sorted(successes)
        allocated = [store.get_student(student_id) for student_id in successes]
        assert all(student.allocated_ta == course_id for student in allocated)
