"""Manual CAPTCHA solving in a visible browser window.

The user solves the challenge by hand while this module polls the page.
Polling is an async loop, so the wait can be cancelled like any other task.
"""

import asyncio
from typing import Callable, Optional

import structlog
from playwright.async_api import Error as PlaywrightError, Page

from stockwatch.config import settings
from stockwatch.core.exceptions import ExternalError, ManualVerificationTimeout
from stockwatch.scrapers.base import CapturedSession
from stockwatch.scrapers.bot_detection import is_still_challenged
from stockwatch.scrapers.utils.browser_manager import BrowserManager, create_visible_manager
from stockwatch.scrapers.utils.user_agents import DESKTOP_USER_AGENT

logger = structlog.get_logger(__name__)


class ManualVerifier:
    """Opens a visible browser and waits for a human to clear the challenge."""

    def __init__(
        self,
        manager_factory: Callable[[], BrowserManager] = create_visible_manager,
        timeout_seconds: Optional[float] = None,
        poll_interval_seconds: Optional[float] = None,
    ):
        self._manager_factory = manager_factory
        self.timeout_seconds = (
            settings.MANUAL_VERIFICATION_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        )
        self.poll_interval_seconds = (
            settings.MANUAL_VERIFICATION_POLL_SECONDS if poll_interval_seconds is None else poll_interval_seconds
        )
        self.logger = logger.bind(service="manual_verifier")

    @property
    def max_attempts(self) -> int:
        if self.poll_interval_seconds <= 0:
            return 1
        return max(1, int(self.timeout_seconds // self.poll_interval_seconds))

    async def verify(self, url: str) -> CapturedSession:
        """Open the URL for the user and capture the session once it clears.

        Raises:
            ManualVerificationTimeout: Challenge still present at the ceiling
            ExternalError: Browser could not be launched or the window was closed
        """
        self.logger.info(
            "manual_verification_started",
            url=url,
            timeout_seconds=self.timeout_seconds,
            poll_interval_seconds=self.poll_interval_seconds,
        )
        try:
            async with self._manager_factory() as manager:
                async with manager.open_page(user_agent=DESKTOP_USER_AGENT) as page:
                    await page.goto(url, wait_until="domcontentloaded")
                    html = await self.wait_until_clear(page)
                    cookies = await page.context.cookies()
        except PlaywrightError as e:
            self.logger.warning("manual_verification_browser_failed", url=url, error=str(e))
            raise ExternalError(f"Verification browser failed for {url}: {e}") from e

        self.logger.info("manual_verification_completed", url=url, cookies=len(cookies))
        return CapturedSession(html=html, cookies=cookies, user_agent=DESKTOP_USER_AGENT)

    async def wait_until_clear(self, page: Page) -> str:
        """Poll the page until it no longer looks like a challenge.

        Returns:
            HTML of the first clear reading
        """
        for attempt in range(1, self.max_attempts + 1):
            await asyncio.sleep(self.poll_interval_seconds)

            if page.is_closed():
                raise ExternalError("Verification window was closed before the challenge was solved.")
            try:
                html = await page.content()
            except PlaywrightError as e:
                # Content is unavailable while the challenge redirects
                self.logger.debug("manual_verification_read_failed", attempt=attempt, error=str(e))
                continue

            if not is_still_challenged(html):
                self.logger.debug("manual_verification_cleared", attempt=attempt)
                return html

        self.logger.warning("manual_verification_timed_out", attempts=self.max_attempts)
        raise ManualVerificationTimeout()
