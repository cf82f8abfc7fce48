"""Headless Chromium page fetcher (requires the ``browser`` extra)."""

import logging
import time

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from .fetcher import USER_AGENT
from .models import FetchResult

logger = logging.getLogger(__name__)

VIEWPORT = {"width": 1280, "height": 720}


class BrowserPageFetcher:
    """Render pages in headless Chromium via Playwright.

    The browser is started on the first fetch and torn down by close().
    Each instance must be used from a single thread.
    """

    def __init__(self, user_agent: str = USER_AGENT, headless: bool = True) -> None:
        self._user_agent = user_agent
        self._headless = headless
        self._playwright = None
        self._browser = None
        self._page = None

    def _ensure_page(self):
        if self._page is None:
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(headless=self._headless)
            context = self._browser.new_context(user_agent=self._user_agent, viewport=VIEWPORT)
            self._page = context.new_page()
        return self._page

    def fetch(self, url: str, timeout_ms: int) -> FetchResult:
        page = self._ensure_page()
        start = time.monotonic()
        try:
            response = page.goto(url, wait_until="networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            return FetchResult(final_url=page.url if page.url != "about:blank" else "", navigation_error=str(e))
        except PlaywrightError as e:
            return FetchResult(navigation_error=e.message)

        load_time_ms = int((time.monotonic() - start) * 1000)
        if response is None:
            return FetchResult(final_url=page.url, load_time_ms=load_time_ms)

        try:
            title = page.title()
            body_text = page.inner_text("body", timeout=5000)
        except PlaywrightError as e:
            logger.debug("Could not read page content for %s: %s", url, e)
            title, body_text = "", ""

        return FetchResult(
            status_code=response.status,
            status_text=response.status_text or "",
            final_url=page.url,
            title=title,
            body_text=body_text,
            load_time_ms=load_time_ms,
        )

    def capture_screenshot(self, destination: str) -> bool:
        if self._page is None:
            return False
        try:
            self._page.screenshot(path=destination, full_page=True)
        except PlaywrightError as e:
            logger.warning("Screenshot to %s failed: %s", destination, e)
            return False
        return True

    def close(self) -> None:
        if self._browser is not None:
            try:
                self._browser.close()
            except PlaywrightError as e:
                logger.debug("Error closing browser: %s", e)
        if self._playwright is not None:
            self._playwright.stop()
        self._page = None
        self._browser = None
        self._playwright = None
