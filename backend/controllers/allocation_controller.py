"""HTTP controller layer for TA allocation, deallocation and freezing."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from backend.controllers.dependencies import get_allocation_service
from backend.domain.models import Actor, AllocationOutcome, parse_actor
from backend.services.allocation_service import (
    AllocationError,
    AllocationInternalError,
    AllocationService,
    NotFoundError,
    TransactionConflictError,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["allocation"])


class ActorFields(BaseModel):
    """Who is acting; the role tag is resolved once into an actor variant."""

    model_config = ConfigDict(populate_by_name=True)

    actor_role: str = Field(
        default="admin",
        validation_alias=AliasChoices("actorRole", "allocatedBy", "deallocatedBy"),
    )
    actor_id: Optional[int] = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("actorId", "allocatedByID", "deallocatedByID"),
    )

    @field_validator("actor_role")
    @classmethod
    def normalize_actor_role(cls, value: str) -> str:
        # jm and professor are special; any other role acts as admin
        return value.strip().lower()

    def to_actor(self) -> Actor:
        return parse_actor(self.actor_role, self.actor_id)


class AllocationRequest(ActorFields):
    student_id: int = Field(gt=0, validation_alias=AliasChoices("studentId", "student_id"))
    course_id: int = Field(gt=0, validation_alias=AliasChoices("courseId", "course_id"))


class DeallocationRequest(ActorFields):
    student_id: int = Field(gt=0, validation_alias=AliasChoices("studentId", "student_id"))
    course_id: Optional[int] = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("courseId", "course_id"),
    )


class FreezeRequest(BaseModel):
    student_id: int = Field(gt=0, validation_alias=AliasChoices("studentId", "student_id"))


class StudentStateResponse(BaseModel):
    id: int
    name: str
    emailId: str
    rollNo: str
    program: str
    department: str
    taType: str
    allocationStatus: int = Field(ge=0, le=2)
    allocatedTA: Optional[int] = None


class AllocationResponse(BaseModel):
    message: str
    student: StudentStateResponse
    courseId: Optional[int] = None
    taAllocated: list[int] = Field(default_factory=list)


def _to_response(outcome: AllocationOutcome) -> AllocationResponse:
    return AllocationResponse(
        message=outcome.message,
        student=StudentStateResponse(**outcome.student.to_flat_dict()),
        courseId=outcome.course.course_id if outcome.course is not None else None,
        taAllocated=list(outcome.course.ta_allocated) if outcome.course is not None else [],
    )


def _resolve_actor(payload: ActorFields) -> Actor:
    try:
        return payload.to_actor()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _raise_for_allocation_error(exc: AllocationError) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, TransactionConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, AllocationInternalError):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post(
    "/allocation",
    response_model=AllocationResponse,
    status_code=status.HTTP_200_OK,
)
def allocate(
    payload: AllocationRequest,
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationResponse:
    """Assign an unallocated student to a course within the current round."""
    actor = _resolve_actor(payload)
    try:
        outcome = service.allocate(payload.student_id, payload.course_id, actor)
        return _to_response(outcome)
    except AllocationError as exc:
        _raise_for_allocation_error(exc)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected allocation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to allocate student",
        ) from exc


@router.post(
    "/deallocation",
    response_model=AllocationResponse,
    status_code=status.HTTP_200_OK,
)
def deallocate(
    payload: DeallocationRequest,
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationResponse:
    actor = _resolve_actor(payload)
    try:
        outcome = service.deallocate(payload.student_id, actor, course_id=payload.course_id)
        return _to_response(outcome)
    except AllocationError as exc:
        _raise_for_allocation_error(exc)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected deallocation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to deallocate student",
        ) from exc


@router.post(
    "/freezeAllocation",
    response_model=AllocationResponse,
    status_code=status.HTTP_200_OK,
)
def freeze_allocation(
    payload: FreezeRequest,
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationResponse:
    try:
        return _to_response(service.freeze(payload.student_id))
    except AllocationError as exc:
        _raise_for_allocation_error(exc)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected freeze failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to freeze allocation",
        ) from exc


@router.get("/logs", status_code=status.HTTP_200_OK)
def list_logs(
    service: AllocationService = Depends(get_allocation_service),
) -> list[dict[str, Any]]:
    """Audit trail of allocation changes in write order."""
    return service.list_logs()


@router.get("/allocations", status_code=status.HTTP_200_OK)
def allocation_report(
    service: AllocationService = Depends(get_allocation_service),
) -> list[dict[str, Any]]:
    return service.allocation_report()
