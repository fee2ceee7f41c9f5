from __future__ import annotations

from dataclasses import replace

from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend.controllers.allocation_controller import router as allocation_router
from backend.controllers.course_controller import router as course_router
from backend.controllers.feedback_controller import router as feedback_router
from backend.controllers.live_controller import router as live_router
from backend.controllers.round_controller import router as round_router
from backend.repository.data_repository import DataRepository
from backend.services.allocation_service import AllocationService, TransactionConflictError
from backend.services.broadcast_service import LIVE_LOGS_EVENT, STUDENT_UPDATED_EVENT, LiveUpdateBroadcaster
from backend.services.course_service import CourseService
from backend.services.feedback_service import FeedbackService
from backend.services.round_service import RoundService
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        smtp_host=None,
        transaction_retry_backoff_seconds=0.0,
    )


def _build_test_app(tmp_path, filename: str) -> tuple[FastAPI, DataRepository]:
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_data()

    broadcaster = LiveUpdateBroadcaster(queue_size=settings.live_update_queue_size)
    app = FastAPI()
    app.include_router(allocation_router)
    app.include_router(round_router)
    app.include_router(course_router)
    app.include_router(feedback_router)
    app.include_router(live_router)
    app.state.repository = repository
    app.state.broadcaster = broadcaster
    app.state.allocation_service = AllocationService(
        repository=repository,
        settings=settings,
        broadcaster=broadcaster,
    )
    app.state.round_service = RoundService(repository=repository, settings=settings)
    app.state.course_service = CourseService(repository=repository, settings=settings)
    app.state.feedback_service = FeedbackService(repository=repository, settings=settings)
    return app, repository


def _first_ids(repository: DataRepository) -> tuple[list[int], dict[str, int]]:
    with repository.session() as store:
        student_ids = [student.student_id for student in store.list_students()]
        course_ids = {course.acronym: course.course_id for course in store.list_courses()}
    return student_ids, course_ids


def test_allocation_endpoints_follow_state_machine(tmp_path):
    app, repository = _build_test_app(tmp_path, "api_flow.db")
    client = TestClient(app)
    student_ids, course_ids = _first_ids(repository)
    small_course = course_ids["SNS"]

    allocated = client.post(
        "/allocation",
        json={"studentId": student_ids[0], "courseId": small_course, "actorRole": "admin"},
    )
    assert allocated.status_code == 200
    body = allocated.json()
    assert body["message"] == "Student allocated successfully"
    assert body["student"]["allocationStatus"] == 1
    assert body["student"]["allocatedTA"] == small_course
    assert body["taAllocated"] == [student_ids[0]]

    full = client.post(
        "/allocation",
        json={"studentId": student_ids[1], "courseId": small_course},
    )
    assert full.status_code == 400
    assert "Maximum allocation limit reached" in full.json()["detail"]

    frozen = client.post("/freezeAllocation", json={"studentId": student_ids[0]})
    assert frozen.status_code == 200
    assert frozen.json()["student"]["allocationStatus"] == 2

    blocked = client.post("/deallocation", json={"studentId": student_ids[0]})
    assert blocked.status_code == 400

    logs = client.get("/logs")
    assert logs.status_code == 200
    assert [item["action"] for item in logs.json()] == ["Allocated"]

    report = client.get("/allocations")
    assert report.status_code == 200
    assert report.json()[0]["Course Code"] == "ECE250"


def test_allocation_error_statuses(tmp_path, monkeypatch):
    app, repository = _build_test_app(tmp_path, "api_errors.db")
    client = TestClient(app)
    student_ids, course_ids = _first_ids(repository)

    missing = client.post("/allocation", json={"studentId": 9999, "courseId": course_ids["IP"]})
    assert missing.status_code == 404

    no_actor_id = client.post(
        "/allocation",
        json={"studentId": student_ids[0], "courseId": course_ids["IP"], "actorRole": "professor"},
    )
    assert no_actor_id.status_code == 400

    bad_actor_id = client.post(
        "/allocation",
        json={"studentId": student_ids[0], "courseId": course_ids["IP"], "actorId": 0},
    )
    assert bad_actor_id.status_code == 422

    not_allocated = client.post("/deallocation", json={"studentId": student_ids[0]})
    assert not_allocated.status_code == 400

    def conflicted(*args, **kwargs):
        raise TransactionConflictError("allocate could not complete after 3 attempts")

    monkeypatch.setattr(app.state.allocation_service, "allocate", conflicted)
    conflict = client.post(
        "/allocation",
        json={"studentId": student_ids[0], "courseId": course_ids["IP"]},
    )
    assert conflict.status_code == 409


def test_other_actor_roles_act_as_admin(tmp_path):
    app, repository = _build_test_app(tmp_path, "api_other_role.db")
    client = TestClient(app)
    student_ids, course_ids = _first_ids(repository)

    allocated = client.post(
        "/allocation",
        json={"studentId": student_ids[0], "courseId": course_ids["IP"], "actorRole": "coordinator"},
    )
    assert allocated.status_code == 200

    released = client.post(
        "/deallocation",
        json={"studentId": student_ids[0], "deallocatedBy": " Coordinator "},
    )
    assert released.status_code == 200

    logs = client.get("/logs").json()
    assert [item["userRole"] for item in logs] == ["admin", "admin"]
    assert [item["userEmailId"] for item in logs] == ["admin", "admin"]


def test_round_lifecycle_endpoints(tmp_path):
    app, repository = _build_test_app(tmp_path, "api_rounds.db")
    client = TestClient(app)
    student_ids, course_ids = _first_ids(repository)

    current = client.get("/rounds/current")
    assert current.status_code == 200
    assert current.json()["currentRound"] == 1

    assert client.post("/rounds/start").status_code == 400
    ended = client.post("/rounds/end")
    assert ended.status_code == 200
    assert ended.json()["ongoing"] is False
    assert client.get("/rounds/current").status_code == 404
    assert client.post("/rounds/end").status_code == 400

    closed = client.post(
        "/allocation",
        json={"studentId": student_ids[0], "courseId": course_ids["IP"]},
    )
    assert closed.status_code == 400
    assert closed.json()["detail"] == "No ongoing round for allocation."

    started = client.post("/rounds/start")
    assert started.status_code == 201
    assert started.json()["currentRound"] == 2

    faculty = client.post(
        "/allocation",
        json={
            "studentId": student_ids[0],
            "courseId": course_ids["IP"],
            "actorRole": "professor",
            "actorId": 1,
        },
    )
    assert faculty.status_code == 400
    assert faculty.json()["detail"] == "Faculty can only allocate in Round 1"
    assert [item["currentRound"] for item in client.get("/rounds").json()] == [1, 2]


def test_course_endpoints(tmp_path):
    app, _ = _build_test_app(tmp_path, "api_courses.db")
    client = TestClient(app)

    assert client.get("/courses", params={"department": "PHY"}).json() == []
    cse = client.get("/courses", params={"department": "CSE"}).json()
    assert {course["acronym"] for course in cse} == {"IP", "DSA", "OS"}

    upload = client.post(
        "/courses",
        json=[
            {
                "name": "Machine Learning",
                "code": "CSE343",
                "acronym": "ML",
                "department": "CSE",
                "totalStudents": 200,
                "taStudentRatio": 40,
                "professor": "Anita Rao",
            },
            {"name": "Incomplete", "code": "X1"},
        ],
    )
    assert upload.status_code == 201
    upload_body = upload.json()
    assert len(upload_body["courseIds"]) == 1
    assert upload_body["invalidCourses"][0]["message"] == "All required fields must be provided"

    course_id = upload_body["courseIds"][0]
    fetched = client.get(f"/courses/{course_id}").json()
    assert fetched["taRequired"] == 5
    assert fetched["professor"] == "Anita Rao"

    updated = client.put(f"/courses/{course_id}", json={"totalStudents": 81})
    assert updated.status_code == 200
    assert updated.json()["taRequired"] == 3

    invalid = client.put(f"/courses/{course_id}", json={"department": "PHY"})
    assert invalid.status_code == 400
    assert client.get("/courses/9999").status_code == 404

    deleted = client.delete(f"/courses/{course_id}")
    assert deleted.status_code == 200
    assert deleted.json()["releasedStudents"] == []
    assert client.get(f"/courses/{course_id}").status_code == 404


def test_feedback_endpoints(tmp_path):
    app, repository = _build_test_app(tmp_path, "api_feedback.db")
    client = TestClient(app)
    student_ids, course_ids = _first_ids(repository)
    client.post("/allocation", json={"studentId": student_ids[0], "courseId": course_ids["LA"]})

    feedbacks = client.get("/feedback/all").json()
    assert len(feedbacks) == 1
    feedback_id = feedbacks[0]["id"]

    closed = client.put(f"/feedback/{feedback_id}", json={"overallGrade": "X"})
    assert closed.status_code == 403
    assert client.get("/feedback/download").status_code == 404

    started = client.post("/feedback/start")
    assert started.status_code == 200
    assert started.json()["created"] == 1
    assert client.get("/feedback/status").json() == {"active": True}

    feedback_id = client.get("/feedback/all").json()[0]["id"]
    edited = client.put(
        f"/feedback/{feedback_id}",
        json={"overallGrade": "X", "qualityOfWork": "Excellent", "comments": "Reliable"},
    )
    assert edited.status_code == 200
    assert edited.json()["qualityOfWork"] == "Excellent"
    assert client.put(f"/feedback/{feedback_id}", json={"qualityOfWork": "Great"}).status_code == 422

    download = client.get("/feedback/download")
    assert download.status_code == 200
    assert download.headers["content-type"].startswith("text/csv")
    assert "attachment" in download.headers["content-disposition"]
    assert "Reliable" in download.text

    assert client.post("/feedback/end").json() == {"active": False}


def test_live_socket_receives_allocation_events(tmp_path):
    app, repository = _build_test_app(tmp_path, "api_live.db")
    client = TestClient(app)
    student_ids, course_ids = _first_ids(repository)

    with client.websocket_connect("/ws/live") as websocket:
        response = client.post(
            "/allocation",
            json={"studentId": student_ids[0], "courseId": course_ids["DSA"]},
        )
        assert response.status_code == 200

        log_message = websocket.receive_json()
        student_message = websocket.receive_json()

    assert log_message["event"] == LIVE_LOGS_EVENT
    assert log_message["data"]["action"] == "Allocated"
    assert student_message["event"] == STUDENT_UPDATED_EVENT
    assert student_message["data"]["id"] == student_ids[0]
