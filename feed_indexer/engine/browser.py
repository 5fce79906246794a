"""Playwright-backed scroll host driving a real feed page."""

from __future__ import annotations

from threading import Lock
from typing import Any

import structlog

from ..config import BrowserSettings


class PlaywrightFeedHost:
    """Expose a live page through the :class:`~feed_indexer.engine.scroll.ScrollHost` protocol.

    Playwright's sync API is bound to the thread that started it, so the page is
    opened lazily by the first call and every later call must come from that
    same thread (the scroll loop's thread when used with ``ScrollSession``).
    """

    def __init__(
        self,
        url: str,
        settings: BrowserSettings | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.url = url
        self.settings = settings or BrowserSettings()
        self.logger = logger or structlog.get_logger("feed_indexer.browser")
        self._lock = Lock()
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    def _ensure_started(self) -> Any:
        if self._page is not None:
            return self._page
        try:
            from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
            from playwright.sync_api import sync_playwright
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "Browser indexing requires installing the 'playwright' package."
            ) from exc

        settings = self.settings
        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(headless=settings.headless_mode)
        width, height = settings.viewport_size
        self._context = self._browser.new_context(
            user_agent=settings.user_agent,
            viewport={"width": width, "height": height},
        )
        self._page = self._context.new_page()
        self._page.set_default_timeout(settings.page_timeout)
        self._page.goto(self.url, wait_until="domcontentloaded")
        if settings.wait_selector:
            try:
                self._page.wait_for_selector(settings.wait_selector)
            except PlaywrightTimeoutError:
                # 首屏未出现条目：继续滚动，由停滞判定决定何时结束
                self.logger.warning(
                    "wait_selector_timeout", url=self.url, selector=settings.wait_selector
                )
        self.logger.info("page_opened", url=self.url)
        return self._page

    # ScrollHost -------------------------------------------------------
    def scroll_offset(self) -> float:
        with self._lock:
            page = self._ensure_started()
            return float(page.evaluate("window.scrollY"))

    def scroll_by(self, delta: float) -> None:
        with self._lock:
            page = self._ensure_started()
            page.evaluate(
                "(top) => window.scrollBy({top, behavior: 'smooth'})",
                delta,
            )

    def visible_count(self) -> int:
        with self._lock:
            page = self._ensure_started()
            return page.locator(self.settings.item_selector).count()

    def end_reached(self) -> bool:
        with self._lock:
            page = self._ensure_started()
            return any(
                page.locator(selector).count() > 0
                for selector in self.settings.end_marker_selectors
            )

    # Extraction support -----------------------------------------------
    def content(self) -> str:
        with self._lock:
            page = self._ensure_started()
            return page.content()

    def current_url(self) -> str:
        with self._lock:
            if self._page is None:
                return self.url
            return self._page.url

    def close(self) -> None:
        with self._lock:
            if self._page is not None:
                self._page.close()
                self._page = None
            if self._context is not None:
                self._context.close()
                self._context = None
            if self._browser is not None:
                self._browser.close()
                self._browser = None
            if self._playwright is not None:
                self._playwright.stop()
                self._playwright = None


__all__ = ["PlaywrightFeedHost"]
