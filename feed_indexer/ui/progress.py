"""Terminal progress helpers built on Rich status spinners."""

from __future__ import annotations

from rich.console import Console
from rich.status import Status

from ..coordinator import StateSnapshot
from ..engine.scroll import ScrollState

_STATE_LABELS = {
    ScrollState.IDLE: "等待开始",
    ScrollState.SCROLLING: "滚动中",
    ScrollState.PAUSED: "已暂停",
    ScrollState.STALLED: "等待加载",
    ScrollState.COMPLETE: "已到底部",
    ScrollState.STOPPED: "已停止",
}


class ProgressActivity:
    """Indeterminate activity indicator using Rich Status spinner."""

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self.console = console or Console()
        self._status: Status | None = None

    def start(self, message: str) -> None:
        if not self.enabled or self._status is not None:
            return
        self._status = self.console.status(message)
        self._status.start()

    def update(self, message: str) -> None:
        if self._status is not None:
            self._status.update(message)

    def close(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None


class IndexingMonitor:
    """Render coordinator snapshots and scroll states on one spinner line."""

    def __init__(self, activity: ProgressActivity) -> None:
        self.activity = activity
        self.state = ScrollState.IDLE
        self.snapshot: StateSnapshot | None = None

    def on_state(self, state: ScrollState) -> None:
        self.state = state
        self.activity.update(self.render())

    def on_snapshot(self, snapshot: StateSnapshot) -> None:
        self.snapshot = snapshot
        self.activity.update(self.render())

    def render(self) -> str:
        label = _STATE_LABELS.get(self.state, self.state.value)
        if self.snapshot is None or not self.snapshot.handle:
            return label
        return (
            f"@{self.snapshot.handle} · {label} · 已索引 {self.snapshot.indexed_count}"
            f" · 本次处理 {self.snapshot.processed_count}"
        )


__all__ = ["IndexingMonitor", "ProgressActivity"]
