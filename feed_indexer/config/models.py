"""Pydantic models used across the Feed-Indexer configuration flow."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class SortMode(str, Enum):
    """Result orderings accepted by the search engine."""

    RELEVANCE = "relevance"
    NEWEST = "newest"
    OLDEST = "oldest"


class ScrollSettings(BaseModel):
    """Timing and termination parameters for the acquisition loop.

    All durations are milliseconds. ``min_delay_ms``/``max_delay_ms`` bound the
    randomised wait after each scroll advance; the remaining fields describe the
    stall recovery manoeuvre and when to give up on a feed.
    """

    min_delay_ms: float = 1500
    max_delay_ms: float = 3000
    scroll_distance: int = 800
    # 连续无进展次数阈值：出现结束标记时 3 次即完成，否则 8 次
    end_marker_stalls: int = 3
    max_stalls: int = 8
    nudge_back: int = 200
    nudge_forward: int = 400
    recovery_pause_ms: float = 1000
    backoff_base_ms: float = 2000
    backoff_step_ms: float = 1500
    pause_poll_ms: float = 500

    @field_validator(
        "min_delay_ms",
        "max_delay_ms",
        "recovery_pause_ms",
        "backoff_base_ms",
        "backoff_step_ms",
        "pause_poll_ms",
    )
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Durations must be non-negative")
        return float(value)

    @model_validator(mode="after")
    def _validate_bounds(self) -> "ScrollSettings":
        if self.max_delay_ms < self.min_delay_ms:
            raise ValueError("max_delay_ms must be >= min_delay_ms")
        if self.scroll_distance <= 0:
            raise ValueError("scroll_distance must be > 0")
        if self.end_marker_stalls < 1 or self.max_stalls < 1:
            raise ValueError("stall thresholds must be >= 1")
        if self.end_marker_stalls > self.max_stalls:
            raise ValueError("end_marker_stalls cannot exceed max_stalls")
        return self

    def backoff_ms(self, stall_count: int) -> float:
        """Wait applied after a recovery manoeuvre; grows linearly with stalls."""

        return self.backoff_base_ms + stall_count * self.backoff_step_ms


class SearchDefaults(BaseModel):
    """Defaults applied to queries issued from the CLI."""

    limit: int = 50
    sort_by: SortMode = SortMode.RELEVANCE

    @field_validator("limit")
    @classmethod
    def _positive_limit(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("limit must be > 0")
        return value


class BrowserSettings(BaseModel):
    """Playwright page options for the browser-backed scroll host."""

    headless_mode: bool = True
    viewport_size: tuple[int, int] = (1280, 2000)
    page_timeout: int = 30000
    user_agent: str | None = None
    item_selector: str = '[data-testid="tweet"]'
    end_marker_selectors: list[str] = Field(
        default_factory=lambda: ['[data-testid="emptyState"]', '[data-testid="retry"]']
    )
    # 等待首屏内容出现后再开始滚动
    wait_selector: str | None = '[data-testid="tweet"]'

    @field_validator("viewport_size", mode="before")
    @classmethod
    def _coerce_viewport(cls, value: Any) -> tuple[int, int]:
        if isinstance(value, (list, tuple)) and len(value) == 2:
            width, height = int(value[0]), int(value[1])
            if width <= 0 or height <= 0:
                raise ValueError("viewport_size values must be positive")
            return (width, height)
        raise ValueError("viewport_size expects [width, height]")


class GlobalConfig(BaseModel):
    """Global controls shared across indexing runs."""

    store_path: Path = Field(default=Path("data/feed.db"))
    scroll: ScrollSettings = Field(default_factory=ScrollSettings)
    search: SearchDefaults = Field(default_factory=SearchDefaults)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    enable_progress_bar: bool = True

    @field_validator("store_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    def resolved_store_path(self, base_dir: Path) -> Path:
        """Return the store path, anchored at ``base_dir`` when relative."""

        if not self.store_path.is_absolute():
            return (base_dir / self.store_path).resolve()
        return self.store_path


__all__ = [
    "BrowserSettings",
    "GlobalConfig",
    "ScrollSettings",
    "SearchDefaults",
    "SortMode",
]
