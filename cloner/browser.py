"""
Headless Chromium lifecycle shared by the browser fetcher, the script
renderer and the manifest sandbox
"""
import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)

try:
    from playwright.async_api import async_playwright
    PLAYWRIGHT_AVAILABLE = True
except ImportError:
    PLAYWRIGHT_AVAILABLE = False
    logger.warning("Playwright not installed. Browser features disabled.")


class BrowserSession:
    """Lazily launches one Chromium instance and hands out isolated contexts"""

    def __init__(self, headless: bool = True, ignore_https_errors: bool = False):
        if not PLAYWRIGHT_AVAILABLE:
            raise ImportError("Playwright is required. Install with: pip install playwright && playwright install chromium")
        self.headless = headless
        self.ignore_https_errors = ignore_https_errors
        self._playwright = None
        self._browser = None
        self._lock = asyncio.Lock()

    async def browser(self):
        async with self._lock:
            if self._browser is None:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=['--disable-blink-features=AutomationControlled'],
                )
                logger.debug("Launched headless Chromium")
            return self._browser

    async def new_context(self, extra_http_headers: Optional[dict] = None, **kwargs):
        """Fresh browser context: no cookies, storage or cache shared with others"""
        browser = await self.browser()
        return await browser.new_context(
            ignore_https_errors=self.ignore_https_errors,
            extra_http_headers=extra_http_headers or {},
            **kwargs,
        )

    async def close(self):
        async with self._lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                finally:
                    self._browser = None
            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                finally:
                    self._playwright = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
