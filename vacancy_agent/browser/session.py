"""Browser session management using patchright.

Hard rules:
  - headless=False always (no config override)
  - Single browser context per run
  - patchright, not vanilla playwright
  - Cookies are restored on start and written back after every human gate
"""

import json
import logging
from pathlib import Path
from types import TracebackType
from typing import Any

from patchright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from vacancy_agent.core.config import BrowserConfig

logger = logging.getLogger(__name__)


class BrowserSession:
    """Owns one patchright browser + context + page.

    Usable as an async context manager, or through ``start``/``stop`` when
    the lifetime is driven by an automation adapter::

        async with BrowserSession(config) as session:
            page = session.page
            await page.goto("https://...")
    """

    def __init__(self, config: BrowserConfig) -> None:
        self._config = config
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        """The single page for this session. Raises if not started."""
        if self._page is None:
            msg = "BrowserSession not started, use 'async with' or start()"
            raise RuntimeError(msg)
        return self._page

    @property
    def started(self) -> bool:
        return self._page is not None

    async def start(self) -> None:
        if self.started:
            return
        pw = await async_playwright().start()
        self._playwright = pw

        # headless=False is non-negotiable: the user logs in by hand
        self._browser = await pw.chromium.launch(headless=False)

        cookies = _load_cookies(self._config.cookies_path)
        self._context = await self._browser.new_context()
        if cookies:
            await self._context.add_cookies(cookies)
            logger.info("Loaded %d cookies from %s", len(cookies), self._config.cookies_path)
        else:
            logger.info("No cookies loaded, a manual login will be needed")

        self._context.set_default_timeout(self._config.timeout_ms)
        self._page = await self._context.new_page()

    async def save_cookies(self) -> int:
        """Write the context's cookies back to ``cookies_path``. Returns the count."""
        if self._context is None:
            return 0
        cookies = await self._context.cookies()
        _write_cookies(self._config.cookies_path, list(cookies))
        logger.debug("Saved %d cookies to %s", len(cookies), self._config.cookies_path)
        return len(cookies)

    async def stop(self) -> None:
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()


def _load_cookies(path: str) -> list[Any]:
    """Load cookies from a JSON file. Returns empty list on any failure."""
    cookie_path = Path(path)
    if not cookie_path.exists():
        logger.debug("Cookie file not found: %s", path)
        return []
    try:
        data = json.loads(cookie_path.read_text())
        if isinstance(data, list):
            return data
        logger.warning("Cookie file is not a JSON array: %s", path)
        return []
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to load cookies from %s: %s", path, e)
        return []


def _write_cookies(path: str, cookies: list[Any]) -> None:
    cookie_path = Path(path)
    try:
        cookie_path.parent.mkdir(parents=True, exist_ok=True)
        cookie_path.write_text(json.dumps(cookies, ensure_ascii=False, indent=2))
    except OSError as e:
        logger.warning("Failed to save cookies to %s: %s", path, e)
