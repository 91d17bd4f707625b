"""Playwright browser lifecycle manager with anti-detection.

Launches chromium in headless or visible mode and hands out short-lived
pages whose context carries the desktop identity, stealth patches and,
when available, cookies from a verified session.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from playwright.async_api import async_playwright, Browser, BrowserContext, Page, Playwright

from stockwatch.config import settings
from stockwatch.scrapers.utils.user_agents import DESKTOP_USER_AGENT

logger = structlog.get_logger(__name__)

HEADLESS_VIEWPORT = {"width": 1920, "height": 1080}
VISIBLE_VIEWPORT = {"width": 1280, "height": 900}


class BrowserManager:
    """Manages one chromium instance.

    Every page gets its own context, so cookies from one domain's verified
    session never leak into another check. With ``user_data_dir`` set the
    browser instead runs one persistent context on that profile directory;
    pages share it and the per-page ``user_agent`` argument is ignored.
    """

    def __init__(
        self,
        headless: bool = True,
        executable_path: Optional[str] = None,
        page_timeout_seconds: float = 60.0,
        user_data_dir: Optional[str] = None,
    ):
        self._headless = headless
        self._executable_path = executable_path
        self._user_data_dir = user_data_dir
        self._page_timeout_ms = page_timeout_seconds * 1000
        self._viewport = HEADLESS_VIEWPORT if headless else VISIBLE_VIEWPORT
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._persistent_context: Optional[BrowserContext] = None
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        """Launch the browser. Safe to call more than once."""
        async with self._lock:
            if self._browser or self._persistent_context:
                return
            self._playwright = await async_playwright().start()
            launch_options = dict(
                headless=self._headless,
                executable_path=self._executable_path,
                chromium_sandbox=True,
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--disable-dev-shm-usage",
                    "--disable-infobars",
                    f"--window-size={self._viewport['width']},{self._viewport['height']}",
                ],
            )
            if self._user_data_dir:
                self._persistent_context = await self._playwright.chromium.launch_persistent_context(
                    self._user_data_dir,
                    user_agent=DESKTOP_USER_AGENT,
                    viewport=self._viewport,
                    locale="en-US",
                    **launch_options,
                )
                await self._persistent_context.add_init_script(STEALTH_JS)
            else:
                self._browser = await self._playwright.chromium.launch(**launch_options)
            logger.info(
                "browser_started",
                headless=self._headless,
                persistent_profile=bool(self._user_data_dir),
            )

    async def stop(self) -> None:
        """Close the browser and the Playwright driver."""
        async with self._lock:
            if self._persistent_context:
                await self._persistent_context.close()
                self._persistent_context = None
            if self._browser:
                await self._browser.close()
                self._browser = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None
            logger.info("browser_stopped", headless=self._headless)

    async def __aenter__(self) -> "BrowserManager":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    @asynccontextmanager
    async def open_page(
        self,
        user_agent: Optional[str] = None,
        cookies: Optional[list[dict]] = None,
    ) -> AsyncIterator[Page]:
        """Open a page, closing it (and its private context) afterwards.

        Args:
            user_agent: Identity to present, defaults to the desktop Chrome UA
            cookies: Playwright-format cookies to inject before navigation
        """
        if not self._browser and not self._persistent_context:
            await self.start()

        if self._persistent_context:
            if cookies:
                await self._persistent_context.add_cookies(cookies)
            page = await self._persistent_context.new_page()
            page.set_default_timeout(self._page_timeout_ms)
            page.set_default_navigation_timeout(self._page_timeout_ms)
            try:
                yield page
            finally:
                await page.close()
            return

        context = await self._browser.new_context(
            user_agent=user_agent or DESKTOP_USER_AGENT,
            viewport=self._viewport,
            locale="en-US",
            java_script_enabled=True,
        )
        try:
            await context.add_init_script(STEALTH_JS)
            if cookies:
                await context.add_cookies(cookies)
            page = await context.new_page()
            page.set_default_timeout(self._page_timeout_ms)
            page.set_default_navigation_timeout(self._page_timeout_ms)
            yield page
        finally:
            await context.close()


# Minimal stealth JS to mask automation signals
STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
window.chrome = { runtime: {} };
const originalQuery = window.navigator.permissions.query;
window.navigator.permissions.query = (parameters) =>
  parameters.name === 'notifications'
    ? Promise.resolve({ state: Notification.permission })
    : originalQuery(parameters);
"""


def create_headless_manager() -> BrowserManager:
    return BrowserManager(
        headless=True,
        executable_path=settings.get_chrome_path(),
        page_timeout_seconds=settings.HEADLESS_PAGE_TIMEOUT_SECONDS,
        user_data_dir=settings.get_browser_user_data_dir(),
    )


def create_visible_manager() -> BrowserManager:
    return BrowserManager(
        headless=False,
        executable_path=settings.get_chrome_path(),
        page_timeout_seconds=settings.HEADLESS_PAGE_TIMEOUT_SECONDS,
        user_data_dir=settings.get_browser_user_data_dir(),
    )
