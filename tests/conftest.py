"""Shared pytest fixtures for the Feed-Indexer test-suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable

import pytest
import structlog

from feed_indexer.config import ConfigLocator, ConfigRepository, GlobalConfig, ScrollSettings
from feed_indexer.engine import Item, ItemStore
from feed_indexer.infra import SQLiteManager


@pytest.fixture(autouse=True, scope="session")
def structlog_to_stdlib() -> None:
    """Route structlog events through stdlib logging so they never reach CLI stdout."""

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep config, data and log files of every test inside its tmp dir."""

    monkeypatch.setenv("FEED_INDEXER_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def sample_global_config(tmp_path: Path) -> GlobalConfig:
    return GlobalConfig(
        store_path=tmp_path / "data" / "feed.db",
        enable_progress_bar=False,
    )


@pytest.fixture
def temp_config_repository(tmp_path: Path) -> Iterable[ConfigRepository]:
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository


@pytest.fixture
def fast_scroll_settings() -> ScrollSettings:
    return ScrollSettings(
        min_delay_ms=0,
        max_delay_ms=0,
        recovery_pause_ms=0,
        backoff_base_ms=0,
        backoff_step_ms=0,
        pause_poll_ms=5,
    )


class FakeClock:
    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.value = start

    def __call__(self) -> int:
        self.value += 1
        return self.value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> Iterable[ItemStore]:
    manager = SQLiteManager()
    yield ItemStore(manager, tmp_path / "feed.db", clock=clock)
    manager.close_all()


@pytest.fixture
def make_item() -> Callable[..., Item]:
    def _builder(item_id: str, **overrides: Any) -> Item:
        base: dict[str, Any] = {
            "id": item_id,
            "source_handle": "alice",
            "text": f"item {item_id}",
            "timestamp": 1_000,
        }
        base.update(overrides)
        return Item(**base)

    return _builder
