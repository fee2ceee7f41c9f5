"""HTTP controller layer for the TA feedback window and export."""

from __future__ import annotations

from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from backend.controllers.dependencies import get_feedback_service
from backend.services.feedback_service import (
    FeedbackClosedError,
    FeedbackConflictError,
    FeedbackNotFoundError,
    FeedbackService,
    FeedbackValidationError,
    NoSubmittedFeedbackError,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/feedback", tags=["feedback"])

EXPORT_FILENAME = "feedbacks.csv"

Rating = Literal["Excellent", "Very Good", "Good", "Average", "Below Average", "NA"]


class FeedbackUpdateRequest(BaseModel):
    """Partial edit; omitted fields keep their stored value."""

    model_config = ConfigDict(populate_by_name=True)

    overall_grade: Optional[Literal["S", "X"]] = Field(
        default=None,
        validation_alias=AliasChoices("overallGrade", "overall_grade"),
    )
    regularity_in_meeting: Optional[Rating] = Field(
        default=None,
        validation_alias=AliasChoices("regularityInMeeting", "regularity_in_meeting"),
    )
    attendance_in_lectures: Optional[Rating] = Field(
        default=None,
        validation_alias=AliasChoices("attendanceInLectures", "attendance_in_lectures"),
    )
    preparedness_for_tutorials: Optional[Rating] = Field(
        default=None,
        validation_alias=AliasChoices("preparednessForTutorials", "preparedness_for_tutorials"),
    )
    timeliness_of_tasks: Optional[Rating] = Field(
        default=None,
        validation_alias=AliasChoices("timelinessOfTasks", "timeliness_of_tasks"),
    )
    quality_of_work: Optional[Rating] = Field(
        default=None,
        validation_alias=AliasChoices("qualityOfWork", "quality_of_work"),
    )
    attitude_commitment: Optional[Rating] = Field(
        default=None,
        validation_alias=AliasChoices("attitudeCommitment", "attitude_commitment"),
    )
    nominated_for_best_ta: Optional[bool] = Field(
        default=None,
        validation_alias=AliasChoices("nominatedForBestTA", "nominated_for_best_ta"),
    )
    comments: Optional[str] = Field(default=None, max_length=2000)


class FeedbackStatusResponse(BaseModel):
    active: bool


class FeedbackStartResponse(BaseModel):
    message: str
    created: int = Field(ge=0)


@router.get("/status", response_model=FeedbackStatusResponse, status_code=status.HTTP_200_OK)
def feedback_status(
    service: FeedbackService = Depends(get_feedback_service),
) -> FeedbackStatusResponse:
    return FeedbackStatusResponse(active=service.feedback_status())


@router.post("/start", response_model=FeedbackStartResponse, status_code=status.HTTP_200_OK)
def start_feedback(
    service: FeedbackService = Depends(get_feedback_service),
) -> FeedbackStartResponse:
    """Open the window and rebuild one placeholder per professor and allocated TA."""
    try:
        created = service.start_feedback()
    except FeedbackConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return FeedbackStartResponse(message="Feedback started successfully", created=created)


@router.post("/end", response_model=FeedbackStatusResponse, status_code=status.HTTP_200_OK)
def end_feedback(
    service: FeedbackService = Depends(get_feedback_service),
) -> FeedbackStatusResponse:
    service.close_feedback()
    return FeedbackStatusResponse(active=False)


@router.get("/all", status_code=status.HTTP_200_OK)
def list_feedbacks(
    service: FeedbackService = Depends(get_feedback_service),
) -> list[dict[str, Any]]:
    return service.list_feedbacks()


@router.get("/download", status_code=status.HTTP_200_OK)
def download_feedbacks(
    service: FeedbackService = Depends(get_feedback_service),
) -> Response:
    try:
        content = service.export_feedbacks()
    except NoSubmittedFeedbackError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected feedback export failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to export feedbacks",
        ) from exc
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )


@router.get("/professor/{professor_id}", status_code=status.HTTP_200_OK)
def professor_feedbacks(
    professor_id: int,
    service: FeedbackService = Depends(get_feedback_service),
) -> list[dict[str, Any]]:
    return service.feedbacks_for_professor(professor_id)


@router.put("/{feedback_id}", status_code=status.HTTP_200_OK)
def edit_feedback(
    feedback_id: int,
    payload: FeedbackUpdateRequest,
    service: FeedbackService = Depends(get_feedback_service),
) -> dict[str, Any]:
    try:
        return service.edit_feedback(feedback_id, payload.model_dump())
    except FeedbackNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except FeedbackClosedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except FeedbackValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except FeedbackConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected feedback edit failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update feedback",
        ) from exc
