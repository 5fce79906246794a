"""Scroll-driven acquisition loop for virtualised, endlessly loading feeds.

A :class:`ScrollSession` repeatedly advances a :class:`ScrollHost`, waits a
randomised delay, reports how many candidate items are visible and decides
whether the feed is still growing. A single reading without progress is not
trusted: the session nudges the view and backs off, and only declares the feed
complete after repeated stalls (fewer when the host shows an end marker).
"""

from __future__ import annotations

import random
from enum import Enum
from threading import Event, Lock, RLock, Thread
from typing import Any, Callable, Generic, Mapping, Protocol, TypeVar

import structlog

from ..config import ScrollSettings
from ..errors import Cancelled

T = TypeVar("T")

ItemSink = Callable[[int], None]
StatusCallback = Callable[["ScrollState"], None]


class ScrollState(str, Enum):
    IDLE = "idle"
    SCROLLING = "scrolling"
    PAUSED = "paused"
    STALLED = "stalled"
    COMPLETE = "complete"
    STOPPED = "stopped"


TERMINAL_STATES = frozenset({ScrollState.COMPLETE, ScrollState.STOPPED})


class ScrollHost(Protocol):
    """The view being scrolled. Offsets only grow while new content loads."""

    def scroll_offset(self) -> float: ...

    def scroll_by(self, delta: float) -> None: ...

    def visible_count(self) -> int: ...

    def end_reached(self) -> bool: ...


class CancellationToken:
    """One-shot cooperative cancellation shared by a single loop run."""

    def __init__(self) -> None:
        self._event = Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Trigger cancellation; return ``False`` if it was already triggered."""

        if self._event.is_set():
            return False
        self._event.set()
        return True

    def wait(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first, in which case raise."""

        if self._event.wait(max(0.0, seconds)):
            raise Cancelled()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled()


class StatusChannel(Generic[T]):
    """Synchronous fan-out of status values.

    Every published value reaches every subscriber exactly once, in publish
    order and in subscription order. Values are never merged or dropped.
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._subscribers: list[Callable[[T], None]] = []
        self._delivery = RLock()
        self.logger = logger or structlog.get_logger("feed_indexer.status")

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        with self._delivery:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._delivery:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, value: T) -> None:
        with self._delivery:
            for callback in list(self._subscribers):
                try:
                    callback(value)
                except Exception:  # noqa: BLE001
                    self.logger.exception("status_subscriber_failed", value=str(value))


class ScrollSession:
    """Own the mutable state of one acquisition loop.

    Sessions share nothing, so several feeds can be scrolled side by side. At
    most one loop runs per session; ``start`` while running does nothing.
    """

    def __init__(
        self,
        host: ScrollHost,
        settings: ScrollSettings | None = None,
        *,
        name: str = "default",
        rng: random.Random | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.host = host
        self.settings = settings or ScrollSettings()
        self.name = name
        self.rng = rng or random.Random()
        self.logger = logger or structlog.get_logger("feed_indexer.scroll")
        self.statuses: StatusChannel[ScrollState] = StatusChannel(self.logger)
        self._lock = Lock()
        self._running = False
        self._paused = False
        self._token: CancellationToken | None = None
        self._thread: Thread | None = None
        self._state = ScrollState.IDLE
        self._stall_count = 0
        self._unsubscribe_callback: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    @property
    def state(self) -> ScrollState:
        return self._state

    @property
    def stall_count(self) -> int:
        return self._stall_count

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    def is_scrolling(self) -> bool:
        return self._running and not self._paused

    # ------------------------------------------------------------------
    def start(
        self,
        sink: ItemSink,
        status_callback: StatusCallback | None = None,
        config: ScrollSettings | Mapping[str, Any] | None = None,
    ) -> bool:
        """Spawn the loop on a background thread. Returns ``False`` if already running."""

        token = self._arm(status_callback, config)
        if token is None:
            return False
        self._thread = Thread(
            target=self._loop,
            args=(token, sink),
            name=f"scroll-{self.name}",
            daemon=True,
        )
        self._thread.start()
        return True

    def run(
        self,
        sink: ItemSink,
        status_callback: StatusCallback | None = None,
        config: ScrollSettings | Mapping[str, Any] | None = None,
    ) -> ScrollState:
        """Run the loop in the calling thread until it completes or is stopped."""

        token = self._arm(status_callback, config)
        if token is None:
            return self._state
        self._loop(token, sink)
        return self._state

    def pause(self) -> None:
        if self._running:
            self._paused = True

    def resume(self) -> None:
        if not self._running:
            return
        self._paused = False
        self._state = ScrollState.SCROLLING
        self.statuses.publish(ScrollState.SCROLLING)

    def stop(self) -> None:
        """Cancel the pending wait immediately and discard loop counters."""

        with self._lock:
            token = self._token
            self._running = False
            self._paused = False
            self._token = None
            self._stall_count = 0
            self._state = ScrollState.STOPPED
        if token is not None:
            token.cancel()
        self.logger.info("scroll_stopped", session=self.name, had_loop=token is not None)
        self.statuses.publish(ScrollState.STOPPED)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the background loop; return ``True`` once it has exited."""

        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # ------------------------------------------------------------------
    def _arm(
        self,
        status_callback: StatusCallback | None,
        config: ScrollSettings | Mapping[str, Any] | None,
    ) -> CancellationToken | None:
        with self._lock:
            if self._running:
                return None
            if isinstance(config, ScrollSettings):
                self.settings = config
            elif config:
                self.settings = ScrollSettings(**dict(config))
            if self._unsubscribe_callback is not None:
                self._unsubscribe_callback()
                self._unsubscribe_callback = None
            if status_callback is not None:
                self._unsubscribe_callback = self.statuses.subscribe(status_callback)
            self._running = True
            self._paused = False
            self._stall_count = 0
            self._token = CancellationToken()
            return self._token

    def _is_current(self, token: CancellationToken) -> bool:
        return self._token is token and not token.cancelled

    def _transition(self, token: CancellationToken, state: ScrollState, *, publish: bool) -> None:
        with self._lock:
            if not self._is_current(token):
                return
            self._state = state
            if state in TERMINAL_STATES:
                self._running = False
        if publish:
            self.statuses.publish(state)

    def _random_delay(self) -> float:
        low, high = self.settings.min_delay_ms, self.settings.max_delay_ms
        return self.rng.uniform(low, high) / 1000.0

    def _notify_sink(self, sink: ItemSink) -> None:
        try:
            count = self.host.visible_count()
        except Exception:  # noqa: BLE001
            # 宿主页面暂时不可读：本轮视为无数据
            self.logger.warning("visible_count_failed", session=self.name, exc_info=True)
            count = 0
        try:
            sink(count)
        except Exception:  # noqa: BLE001
            self.logger.exception("scroll_sink_failed", session=self.name)

    def _loop(self, token: CancellationToken, sink: ItemSink) -> None:
        settings = self.settings
        self._transition(token, ScrollState.SCROLLING, publish=True)
        self.logger.info("scroll_started", session=self.name, distance=settings.scroll_distance)
        try:
            while self._running and not token.cancelled:
                if self._paused:
                    # 每次轮询都上报 paused，作为暂停期间的心跳
                    self._transition(token, ScrollState.PAUSED, publish=True)
                    token.wait(settings.pause_poll_ms / 1000.0)
                    continue

                previous = self.host.scroll_offset()
                token.raise_if_cancelled()
                self.host.scroll_by(settings.scroll_distance)
                token.wait(self._random_delay())

                self._notify_sink(sink)

                current = self.host.scroll_offset()
                if current > previous:
                    self._stall_count = 0
                    if self._state is not ScrollState.SCROLLING:
                        self._transition(token, ScrollState.SCROLLING, publish=False)
                    continue

                self._stall_count += 1
                stalls = self._stall_count
                self._transition(token, ScrollState.STALLED, publish=False)
                end_marker = self.host.end_reached()
                self.logger.debug(
                    "scroll_stall", session=self.name, stalls=stalls, end_marker=end_marker
                )
                if (end_marker and stalls >= settings.end_marker_stalls) or stalls >= settings.max_stalls:
                    self.logger.info(
                        "scroll_complete", session=self.name, stalls=stalls, end_marker=end_marker
                    )
                    self._stall_count = 0
                    self._transition(token, ScrollState.COMPLETE, publish=True)
                    return

                # 回退再前进，给虚拟列表留出加载时间
                token.raise_if_cancelled()
                self.host.scroll_by(-settings.nudge_back)
                token.wait(settings.recovery_pause_ms / 1000.0)
                token.raise_if_cancelled()
                self.host.scroll_by(settings.nudge_forward)
                token.wait(settings.backoff_ms(stalls) / 1000.0)
        except Cancelled:
            self.logger.debug("scroll_cancelled", session=self.name)
        except Exception:  # noqa: BLE001
            self.logger.exception("scroll_loop_error", session=self.name)
            self._transition(token, ScrollState.STOPPED, publish=True)


__all__ = [
    "CancellationToken",
    "ItemSink",
    "ScrollHost",
    "ScrollSession",
    "ScrollState",
    "StatusCallback",
    "StatusChannel",
]
