"""HTTP controller layer for the course catalogue."""

from __future__ import annotations

from typing import Any, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from backend.controllers.dependencies import get_course_service
from backend.services.course_service import (
    CourseConflictError,
    CourseDraft,
    CourseNotFoundError,
    CourseService,
    CourseValidationError,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/courses", tags=["courses"])


class CourseUploadItem(BaseModel):
    """One uploaded course row; missing fields are reported per row, not rejected."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    code: Optional[str] = None
    acronym: Optional[str] = None
    department: Optional[str] = None
    total_students: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("totalStudents", "total_students"),
    )
    ta_student_ratio: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("taStudentRatio", "ta_student_ratio"),
    )
    professor: Optional[str] = None
    credits: Optional[int] = Field(default=None, gt=0)

    def to_draft(self) -> CourseDraft:
        return CourseDraft(
            name=self.name,
            code=self.code,
            acronym=self.acronym,
            department=self.department,
            total_students=self.total_students,
            ta_student_ratio=self.ta_student_ratio,
            professor=self.professor,
            credits=self.credits,
        )


class CourseUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    code: Optional[str] = None
    acronym: Optional[str] = None
    department: Optional[str] = None
    credits: Optional[int] = Field(default=None, gt=0)
    total_students: Optional[int] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("totalStudents", "total_students"),
    )
    ta_student_ratio: Optional[int] = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("taStudentRatio", "ta_student_ratio"),
    )
    professor: Optional[str] = None


class CourseResponse(BaseModel):
    id: int
    name: str
    code: str
    acronym: str
    department: Optional[str] = None
    credits: int
    professor: str
    totalStudents: int = Field(ge=0)
    taStudentRatio: int = Field(gt=0)
    taRequired: int = Field(ge=0)
    taAllocated: list[int]


class CourseUploadResponse(BaseModel):
    message: str
    courseIds: list[int]
    invalidCourses: list[dict[str, Any]]


class CourseDeleteResponse(BaseModel):
    message: str
    releasedStudents: list[int]


@router.get("", response_model=list[CourseResponse], status_code=status.HTTP_200_OK)
def list_courses(
    name: Optional[str] = Query(default=None),
    code: Optional[str] = Query(default=None),
    acronym: Optional[str] = Query(default=None),
    department: Optional[str] = Query(default=None),
    professor: Optional[str] = Query(default=None),
    credits: Optional[int] = Query(default=None, gt=0),
    service: CourseService = Depends(get_course_service),
) -> list[CourseResponse]:
    courses = service.list_courses(
        name=name,
        code=code,
        acronym=acronym,
        department=department,
        professor=professor,
        credits=credits,
    )
    return [CourseResponse(**course) for course in courses]


@router.post("", response_model=CourseUploadResponse, status_code=status.HTTP_201_CREATED)
def add_courses(
    payload: Union[list[CourseUploadItem], CourseUploadItem],
    service: CourseService = Depends(get_course_service),
) -> CourseUploadResponse:
    """Upsert one course or a batch; invalid rows come back in ``invalidCourses``."""
    items = payload if isinstance(payload, list) else [payload]
    try:
        return CourseUploadResponse(**service.add_courses([item.to_draft() for item in items]))
    except CourseConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected course upload failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to add courses",
        ) from exc


@router.get(
    "/professor/{professor_id}",
    response_model=list[CourseResponse],
    status_code=status.HTTP_200_OK,
)
def professor_courses(
    professor_id: int,
    service: CourseService = Depends(get_course_service),
) -> list[CourseResponse]:
    return [CourseResponse(**course) for course in service.professor_courses(professor_id)]


@router.get("/{course_id}", response_model=CourseResponse, status_code=status.HTTP_200_OK)
def get_course(
    course_id: int,
    service: CourseService = Depends(get_course_service),
) -> CourseResponse:
    try:
        return CourseResponse(**service.get_course(course_id))
    except CourseNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.put("/{course_id}", response_model=CourseResponse, status_code=status.HTTP_200_OK)
def update_course(
    course_id: int,
    payload: CourseUpdateRequest,
    service: CourseService = Depends(get_course_service),
) -> CourseResponse:
    try:
        return CourseResponse(**service.update_course(course_id, payload.model_dump()))
    except CourseNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except CourseValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except CourseConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected course update failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update course",
        ) from exc


@router.delete("/{course_id}", response_model=CourseDeleteResponse, status_code=status.HTTP_200_OK)
def delete_course(
    course_id: int,
    service: CourseService = Depends(get_course_service),
) -> CourseDeleteResponse:
    try:
        return CourseDeleteResponse(**service.delete_course(course_id))
    except CourseNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except CourseConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected course delete failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete course",
        ) from exc
