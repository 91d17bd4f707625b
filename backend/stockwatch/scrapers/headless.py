"""Headless browser fetch tier."""

from typing import Callable, Optional

import structlog
from playwright.async_api import Error as PlaywrightError, Page, TimeoutError as PlaywrightTimeoutError

from stockwatch.core.exceptions import ExternalError
from stockwatch.scrapers.base import FetchedPage, SessionIdentity
from stockwatch.scrapers.utils.browser_manager import BrowserManager, create_headless_manager
from stockwatch.scrapers.utils.retry import playwright_retry

logger = structlog.get_logger(__name__)

# Extra wait for challenge scripts that redirect after DOMContentLoaded
SETTLE_TIMEOUT_MS = 5000


class HeadlessFetcher:
    """Renders a page in headless chromium and returns the final HTML."""

    def __init__(self, manager_factory: Callable[[], BrowserManager] = create_headless_manager):
        self._manager_factory = manager_factory
        self.logger = logger.bind(service="headless_fetcher")

    async def fetch(self, url: str, identity: Optional[SessionIdentity] = None) -> FetchedPage:
        """Render the URL, replaying a verified session if one is given.

        Raises:
            ExternalError: Browser could not be launched or navigation failed
        """
        self.logger.info("headless_fetch_started", url=url, with_session=identity is not None)
        try:
            async with self._manager_factory() as manager:
                async with manager.open_page(
                    user_agent=identity.user_agent if identity else None,
                    cookies=identity.cookies if identity else None,
                ) as page:
                    page_result = await self._render(page, url)
        except PlaywrightError as e:
            self.logger.warning("headless_fetch_failed", url=url, error=str(e))
            raise ExternalError(f"Headless browser failed for {url}: {e}") from e

        self.logger.info("headless_fetch_completed", url=url, status=page_result.status, bytes=len(page_result.html))
        return page_result

    @playwright_retry
    async def _render(self, page: Page, url: str) -> FetchedPage:
        response = await page.goto(url, wait_until="domcontentloaded")
        try:
            await page.wait_for_load_state("networkidle", timeout=SETTLE_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            # Pages with long-polling never go idle; the DOM is already there
            self.logger.debug("headless_page_not_idle", url=url)
        html = await page.content()
        status = response.status if response is not None else 200
        return FetchedPage(status=status, html=html, url=page.url)
