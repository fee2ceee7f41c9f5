"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from backend.services.allocation_service import AllocationService
from backend.services.course_service import CourseService
from backend.services.feedback_service import FeedbackService
from backend.services.round_service import RoundService


def _require_state(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_allocation_service(request: Request) -> AllocationService:
    return _require_state(request, "allocation_service", "Allocation service")


def get_round_service(request: Request) -> RoundService:
    return _require_state(request, "round_service", "Round service")


def get_course_service(request: Request) -> CourseService:
    return _require_state(request, "course_service", "Course service")


def get_feedback_service(request: Request) -> FeedbackService:
    return _require_state(request, "feedback_service", "Feedback service")
