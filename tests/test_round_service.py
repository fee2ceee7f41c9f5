from __future__ import annotations

from dataclasses import replace

import pytest

from backend.repository.data_repository import DataRepository
from backend.services.round_service import (
    NoOngoingRoundError,
    RoundAlreadyOngoingError,
    RoundService,
)
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, seed_demo_data=False)


def _build_service(tmp_path, filename: str) -> RoundService:
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    return RoundService(repository=repository, settings=settings)


def test_rounds_are_numbered_sequentially(tmp_path):
    service = _build_service(tmp_path, "round_sequence.db")
    assert service.current_round() is None

    first = service.start_round()
    assert first.current_round == 1
    assert first.ongoing

    ended = service.end_round()
    assert ended.round_id == first.round_id
    assert not ended.ongoing
    assert ended.end_date is not None

    second = service.start_round()
    assert second.current_round == 2
    assert service.current_round() == second
    assert [item.current_round for item in service.list_rounds()] == [1, 2]


def test_only_one_round_may_run(tmp_path):
    service = _build_service(tmp_path, "round_single.db")
    service.start_round()

    with pytest.raises(RoundAlreadyOngoingError, match="Round 1"):
        service.start_round()


def test_end_without_ongoing_round(tmp_path):
    service = _build_service(tmp_path, "round_end.db")

    with pytest.raises(NoOngoingRoundError):
        service.end_round()
