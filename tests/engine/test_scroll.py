from __future__ import annotations

import time
from threading import Event, Lock

import pytest

from feed_indexer.config import ScrollSettings
from feed_indexer.engine import CancellationToken, ScrollSession, ScrollState, StatusChannel
from feed_indexer.errors import Cancelled


class FakeFeedHost:
    """Scrollable view whose content stops growing at ``limit`` (``None`` for endless)."""

    def __init__(self, limit: float | None = None, end_marker: bool = False) -> None:
        self.limit = limit
        self.end_marker = end_marker
        self.offset = 0.0
        self.scroll_calls: list[float] = []
        self.scrolled = Event()
        self._lock = Lock()

    def scroll_offset(self) -> float:
        with self._lock:
            return self.offset

    def scroll_by(self, delta: float) -> None:
        with self._lock:
            self.scroll_calls.append(delta)
            target = max(0.0, self.offset + delta)
            if self.limit is not None:
                target = min(target, self.limit)
            self.offset = target
        self.scrolled.set()

    def visible_count(self) -> int:
        return int(self.offset // 100)

    def end_reached(self) -> bool:
        return self.end_marker


class RecordingSink:
    def __init__(self) -> None:
        self.counts: list[int] = []
        self.called = Event()

    def __call__(self, visible: int) -> None:
        self.counts.append(visible)
        self.called.set()


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def test_feed_without_progress_completes_after_max_stalls(fast_scroll_settings) -> None:
    host = FakeFeedHost(limit=0)
    session = ScrollSession(host, fast_scroll_settings)
    sink = RecordingSink()
    states: list[ScrollState] = []

    final = session.run(sink, states.append)

    assert final is ScrollState.COMPLETE
    assert len(sink.counts) == 8
    assert states == [ScrollState.SCROLLING, ScrollState.COMPLETE]
    assert not session.is_running
    assert session.stall_count == 0


def test_end_marker_shortens_completion(fast_scroll_settings) -> None:
    host = FakeFeedHost(limit=0, end_marker=True)
    session = ScrollSession(host, fast_scroll_settings)
    sink = RecordingSink()

    assert session.run(sink) is ScrollState.COMPLETE
    assert len(sink.counts) == 3


def test_progress_resets_stall_counter(fast_scroll_settings) -> None:
    host = FakeFeedHost(limit=2400)
    session = ScrollSession(host, fast_scroll_settings)
    sink = RecordingSink()

    assert session.run(sink) is ScrollState.COMPLETE
    # three advances reach the limit, then eight stalled readings
    assert len(sink.counts) == 11
    assert sink.counts[:3] == [8, 16, 24]


def test_stall_recovery_nudges_back_then_forward(fast_scroll_settings) -> None:
    host = FakeFeedHost(limit=0, end_marker=True)
    session = ScrollSession(host, fast_scroll_settings)
    session.run(RecordingSink())
    distance = fast_scroll_settings.scroll_distance
    back, forward = fast_scroll_settings.nudge_back, fast_scroll_settings.nudge_forward
    assert host.scroll_calls == [distance, -back, forward, distance, -back, forward, distance]


def test_run_accepts_mapping_config(fast_scroll_settings) -> None:
    host = FakeFeedHost(limit=0)
    session = ScrollSession(host)
    sink = RecordingSink()
    config = fast_scroll_settings.model_dump() | {"max_stalls": 4, "end_marker_stalls": 2}

    session.run(sink, config=config)

    assert len(sink.counts) == 4
    assert session.settings.max_stalls == 4


def test_pause_and_resume(fast_scroll_settings) -> None:
    host = FakeFeedHost()
    session = ScrollSession(host, fast_scroll_settings)
    sink = RecordingSink()
    states: list[ScrollState] = []

    assert session.start(sink, states.append)
    assert sink.called.wait(2)

    session.pause()
    assert wait_until(lambda: session.state is ScrollState.PAUSED)
    assert session.is_running and session.is_paused
    assert not session.is_scrolling()
    frozen = len(sink.counts)
    assert wait_until(lambda: states.count(ScrollState.PAUSED) >= 5)
    assert len(sink.counts) == frozen

    session.resume()
    assert session.is_scrolling()
    assert wait_until(lambda: len(sink.counts) > frozen)

    session.stop()
    assert session.join(2)
    assert states[0] is ScrollState.SCROLLING
    assert ScrollState.PAUSED in states
    assert states[-1] is ScrollState.STOPPED


def test_stop_interrupts_pending_wait() -> None:
    slow = ScrollSettings(min_delay_ms=60_000, max_delay_ms=60_000)
    host = FakeFeedHost()
    session = ScrollSession(host, slow)
    sink = RecordingSink()

    assert session.start(sink)
    assert host.scrolled.wait(2)
    started = time.monotonic()
    session.stop()

    assert session.join(2)
    assert time.monotonic() - started < 2
    assert session.state is ScrollState.STOPPED
    assert sink.counts == []
    assert len(host.scroll_calls) == 1


def test_start_while_running_is_noop(fast_scroll_settings) -> None:
    session = ScrollSession(FakeFeedHost(), fast_scroll_settings)
    assert session.start(RecordingSink())
    try:
        assert session.start(RecordingSink()) is False
    finally:
        session.stop()
        assert session.join(2)


def test_session_can_restart_after_completion(fast_scroll_settings) -> None:
    host = FakeFeedHost(limit=0, end_marker=True)
    session = ScrollSession(host, fast_scroll_settings)
    assert session.run(RecordingSink()) is ScrollState.COMPLETE
    sink = RecordingSink()
    assert session.run(sink) is ScrollState.COMPLETE
    assert len(sink.counts) == 3


def test_stop_when_idle_still_reports_stopped() -> None:
    session = ScrollSession(FakeFeedHost())
    states: list[ScrollState] = []
    session.statuses.subscribe(states.append)
    session.stop()
    session.resume()
    session.pause()
    session.stop()
    assert states == [ScrollState.STOPPED, ScrollState.STOPPED]
    assert session.state is ScrollState.STOPPED
    assert not session.is_paused


def test_failing_sink_does_not_stop_loop(fast_scroll_settings) -> None:
    calls: list[int] = []

    def sink(visible: int) -> None:
        calls.append(visible)
        raise RuntimeError("sink broke")

    session = ScrollSession(FakeFeedHost(limit=0, end_marker=True), fast_scroll_settings)
    assert session.run(sink) is ScrollState.COMPLETE
    assert len(calls) == 3


def test_host_failure_stops_loop(fast_scroll_settings) -> None:
    class BrokenHost(FakeFeedHost):
        def scroll_offset(self) -> float:
            raise RuntimeError("page crashed")

    session = ScrollSession(BrokenHost(), fast_scroll_settings)
    states: list[ScrollState] = []
    assert session.run(RecordingSink(), states.append) is ScrollState.STOPPED
    assert states == [ScrollState.SCROLLING, ScrollState.STOPPED]
    assert not session.is_running


def test_sessions_are_independent(fast_scroll_settings) -> None:
    first_host, second_host = FakeFeedHost(limit=0), FakeFeedHost(limit=0, end_marker=True)
    first = ScrollSession(first_host, fast_scroll_settings, name="first")
    second = ScrollSession(second_host, fast_scroll_settings, name="second")
    first_sink, second_sink = RecordingSink(), RecordingSink()

    assert first.start(first_sink)
    assert second.start(second_sink)
    assert first.join(5) and second.join(5)

    assert first.state is ScrollState.COMPLETE
    assert second.state is ScrollState.COMPLETE
    assert len(first_sink.counts) == 8
    assert len(second_sink.counts) == 3


def test_status_callback_is_replaced_between_runs(fast_scroll_settings) -> None:
    session = ScrollSession(FakeFeedHost(limit=0, end_marker=True), fast_scroll_settings)
    old: list[ScrollState] = []
    new: list[ScrollState] = []
    session.run(RecordingSink(), old.append)
    session.run(RecordingSink(), new.append)
    assert old == [ScrollState.SCROLLING, ScrollState.COMPLETE]
    assert new == [ScrollState.SCROLLING, ScrollState.COMPLETE]


def test_status_channel_delivers_in_order_and_survives_failures() -> None:
    channel: StatusChannel[int] = StatusChannel()
    seen: list[tuple[str, int]] = []

    def broken(value: int) -> None:
        raise ValueError(value)

    channel.subscribe(lambda value: seen.append(("a", value)))
    channel.subscribe(broken)
    unsubscribe = channel.subscribe(lambda value: seen.append(("b", value)))
    channel.publish(1)
    unsubscribe()
    channel.publish(2)

    assert seen == [("a", 1), ("b", 1), ("a", 2)]


def test_cancellation_token() -> None:
    token = CancellationToken()
    token.wait(0)
    token.raise_if_cancelled()
    assert token.cancel() is True
    assert token.cancel() is False
    assert token.cancelled
    with pytest.raises(Cancelled):
        token.wait(10)
    with pytest.raises(Cancelled):
        token.raise_if_cancelled()
