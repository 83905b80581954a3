"""Shared fixtures for the test suite."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from fakes import FrozenClock
from lead_intake.core.config import StorageSettings, load_app_settings
from lead_intake.storage import SqliteCrmRepository


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    """Ensure each test sees a fresh settings instance."""

    load_app_settings.cache_clear()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "crm.db"


@pytest.fixture
def repository(db_path: Path) -> Iterator[SqliteCrmRepository]:
    with SqliteCrmRepository(StorageSettings(db_path=db_path)) as repo:
        yield repo
