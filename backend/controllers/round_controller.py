"""HTTP controller layer for the allocation round lifecycle."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from backend.controllers.dependencies import get_round_service
from backend.domain.models import Round
from backend.services.round_service import (
    NoOngoingRoundError,
    RoundAlreadyOngoingError,
    RoundConflictError,
    RoundService,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/rounds", tags=["rounds"])


class RoundResponse(BaseModel):
    id: int = Field(gt=0)
    currentRound: int = Field(gt=0)
    ongoing: bool
    startDate: Optional[str] = None
    endDate: Optional[str] = None


def _to_response(round_: Round) -> RoundResponse:
    return RoundResponse(**round_.to_dict())


@router.get("", response_model=list[RoundResponse], status_code=status.HTTP_200_OK)
def list_rounds(service: RoundService = Depends(get_round_service)) -> list[RoundResponse]:
    return [_to_response(item) for item in service.list_rounds()]


@router.get("/current", response_model=RoundResponse, status_code=status.HTTP_200_OK)
def current_round(service: RoundService = Depends(get_round_service)) -> RoundResponse:
    ongoing = service.current_round()
    if ongoing is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No ongoing round")
    return _to_response(ongoing)


@router.post("/start", response_model=RoundResponse, status_code=status.HTTP_201_CREATED)
def start_round(service: RoundService = Depends(get_round_service)) -> RoundResponse:
    try:
        return _to_response(service.start_round())
    except RoundAlreadyOngoingError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RoundConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected failure while starting a round")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to start round",
        ) from exc


@router.post("/end", response_model=RoundResponse, status_code=status.HTTP_200_OK)
def end_round(service: RoundService = Depends(get_round_service)) -> RoundResponse:
    try:
        return _to_response(service.end_round())
    except NoOngoingRoundError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RoundConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected failure while ending a round")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to end round",
        ) from exc
