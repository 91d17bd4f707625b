"""Plain HTTP fetch tier."""

from typing import Optional

import httpx
import structlog

from stockwatch.config import settings
from stockwatch.core.exceptions import ExternalError
from stockwatch.scrapers.base import FetchedPage, SessionIdentity
from stockwatch.scrapers.utils.retry import http_retry
from stockwatch.scrapers.utils.user_agents import get_browser_headers

logger = structlog.get_logger(__name__)


def build_cookie_jar(cookies: list[dict]) -> httpx.Cookies:
    """Convert Playwright-format cookies into an httpx cookie jar."""
    jar = httpx.Cookies()
    for cookie in cookies:
        name = cookie.get("name")
        if not name:
            continue
        jar.set(
            name,
            cookie.get("value", ""),
            domain=cookie.get("domain", ""),
            path=cookie.get("path", "/"),
        )
    return jar


class PlainFetcher:
    """Fetches a page over HTTP with a desktop browser identity.

    Returns every response, blocked or not; deciding whether it is a
    challenge page is the caller's job.
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        connect_timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = httpx.Timeout(
            timeout_seconds or settings.HTTP_TIMEOUT_SECONDS,
            connect=connect_timeout_seconds or settings.HTTP_CONNECT_TIMEOUT_SECONDS,
        )
        self._transport = transport
        self.logger = logger.bind(service="plain_fetcher")

    async def fetch(self, url: str, identity: Optional[SessionIdentity] = None) -> FetchedPage:
        """GET the URL, replaying a verified session if one is given.

        Raises:
            ExternalError: Network failure after retries
        """
        try:
            page = await self._get(url, identity)
        except httpx.HTTPError as e:
            self.logger.warning("plain_fetch_failed", url=url, error=str(e))
            raise ExternalError(f"Request failed for {url}: {e}") from e

        self.logger.debug(
            "plain_fetch_completed",
            url=url,
            status=page.status,
            bytes=len(page.html),
            with_session=identity is not None,
        )
        return page

    @http_retry
    async def _get(self, url: str, identity: Optional[SessionIdentity]) -> FetchedPage:
        headers = get_browser_headers(identity.user_agent if identity else None)
        cookies = build_cookie_jar(identity.cookies) if identity else None

        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            headers=headers,
            cookies=cookies,
            transport=self._transport,
        ) as client:
            response = await client.get(url)

        return FetchedPage(status=response.status_code, html=response.text, url=str(response.url))
