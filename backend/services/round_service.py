"""Allocation round lifecycle: which round is running, start and end."""

from __future__ import annotations

import sqlite3
from typing import Optional

from backend.domain.models import Round
from backend.repository.data_repository import DataRepository, StoreConflictError, utc_now
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class RoundError(Exception):
    """Base failure for round lifecycle operations."""


class RoundAlreadyOngoingError(RoundError):
    """Raised when starting a round while another is still running."""


class NoOngoingRoundError(RoundError):
    """Raised when ending a round while none is running."""


class RoundConflictError(RoundError):
    """Raised when another writer held the store for too long."""


class RoundService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def current_round(self) -> Optional[Round]:
        with self._repository.session() as store:
            return store.find_current_round()

    def list_rounds(self) -> list[Round]:
        with self._repository.session() as store:
            return store.list_rounds()

    def start_round(self) -> Round:
        """Open the next numbered round; only one may run at a time."""
        try:
            with self._repository.transaction() as store:
                ongoing = store.find_current_round()
                if ongoing is not None:
                    raise RoundAlreadyOngoingError(
                        f"Round {ongoing.current_round} is still ongoing"
                    )
                created = store.insert_round(store.latest_round_number() + 1, utc_now())
        except StoreConflictError as exc:
            raise RoundConflictError(str(exc)) from exc
        except sqlite3.IntegrityError as exc:
            raise RoundAlreadyOngoingError("Another round was started concurrently") from exc
        logger.info("Started allocation round %s", created.current_round)
        return created

    def end_round(self) -> Round:
        try:
            with self._repository.transaction() as store:
                ongoing = store.find_current_round()
                if ongoing is None:
                    raise NoOngoingRoundError("No ongoing round to end")
                ended_at = utc_now()
                store.close_round(ongoing.round_id, ended_at)
        except StoreConflictError as exc:
            raise RoundConflictError(str(exc)) from exc
        logger.info("Ended allocation round %s", ongoing.current_round)
        return Round(
            round_id=ongoing.round_id,
            current_round=ongoing.current_round,
            ongoing=False,
            start_date=ongoing.start_date,
            end_date=ended_at,
        )
