"""Availability checking for one product URL.

Drives the plain -> headless -> manual escalation described in
``fetch_state`` and runs the structured-data extractor on whichever tier
produced real content.
"""

import json
from typing import Optional, Protocol

import structlog

from stockwatch.core.exceptions import BotProtectionError, HttpStatusError
from stockwatch.models.verified_session import VerifiedSession
from stockwatch.scrapers.base import FetchedPage, ScrapingResult, SessionIdentity
from stockwatch.scrapers.bot_detection import is_challenge_page, is_still_challenged
from stockwatch.scrapers.fetch_state import FetchPolicy, FetchState, next_state
from stockwatch.scrapers.headless import HeadlessFetcher
from stockwatch.scrapers.http_client import PlainFetcher
from stockwatch.scrapers.manual_verification import ManualVerifier
from stockwatch.scrapers.structured_data import extract_product_data
from stockwatch.scrapers.utils.normalizer import extract_domain, validate_product_url

logger = structlog.get_logger(__name__)

BOT_PROTECTION_MESSAGE = (
    "This site has bot protection. Enable headless browser in settings to check this site."
)
CAPTCHA_REQUIRED_MESSAGE = (
    "This site requires manual verification (CAPTCHA). Please check the product page directly."
)


class SessionStore(Protocol):
    """Verified-session lookups the scraper needs."""

    async def find(self, domain: str) -> Optional[VerifiedSession]: ...

    async def upsert(
        self,
        domain: str,
        cookies: list[dict],
        user_agent: str,
        ttl_days: int,
    ) -> VerifiedSession: ...


class AvailabilityScraper:
    """Fetches a product page through as many tiers as the policy allows.

    Fetchers are injectable so tests can drive every transition without a
    network or a browser.
    """

    def __init__(
        self,
        session_store: SessionStore,
        plain_fetcher: Optional[PlainFetcher] = None,
        headless_fetcher: Optional[HeadlessFetcher] = None,
        manual_verifier: Optional[ManualVerifier] = None,
    ):
        self.session_store = session_store
        self.plain_fetcher = plain_fetcher or PlainFetcher()
        self.headless_fetcher = headless_fetcher or HeadlessFetcher()
        self.manual_verifier = manual_verifier or ManualVerifier()
        self.logger = logger.bind(service="availability_scraper")

    async def check(self, url: str, policy: FetchPolicy) -> ScrapingResult:
        """Check one URL.

        Args:
            url: Product page URL
            policy: Fallback tiers allowed for this check

        Returns:
            ScrapingResult; status is unknown if the page had no product data

        Raises:
            ValidationError: URL is not an http(s) URL (before any request)
            BotProtectionError: Challenge not cleared by any allowed tier
            ManualVerificationTimeout: Nobody solved the CAPTCHA in time
            HttpStatusError: Error status with no product data
            ExternalError: Network or browser failure
        """
        url = validate_product_url(url)
        domain = extract_domain(url)

        state = FetchState.PLAIN_FETCH
        identity: Optional[SessionIdentity] = None
        page: Optional[FetchedPage] = None
        failed_in = state

        while not state.is_terminal:
            if state is FetchState.PLAIN_FETCH:
                page = await self.plain_fetcher.fetch(url)
                challenged = is_challenge_page(page.status, page.html)
                if challenged:
                    identity = await self._cached_identity(domain)

            elif state is FetchState.HEADLESS_FETCH:
                page = await self.headless_fetcher.fetch(url, identity)
                challenged = is_still_challenged(page.html)

            else:
                captured = await self.manual_verifier.verify(url)
                await self.session_store.upsert(
                    domain,
                    captured.cookies,
                    captured.user_agent,
                    policy.session_ttl_days,
                )
                page = FetchedPage(status=200, html=captured.html, url=url)
                challenged = False

            failed_in = state
            state = next_state(state, challenged, policy)
            self.logger.info(
                "fetch_transition",
                url=url,
                from_state=failed_in.value,
                to_state=state.value,
                challenged=challenged,
                with_session=identity is not None,
            )

        if state is FetchState.FAILURE:
            message = (
                BOT_PROTECTION_MESSAGE
                if failed_in is FetchState.PLAIN_FETCH
                else CAPTCHA_REQUIRED_MESSAGE
            )
            raise BotProtectionError(message)

        return self._extract(page, url)

    async def _cached_identity(self, domain: str) -> Optional[SessionIdentity]:
        session = await self.session_store.find(domain)
        if session is None:
            return None
        try:
            cookies = session.cookies
        except json.JSONDecodeError:
            self.logger.warning("verified_session_cookies_corrupt", domain=domain)
            return None
        if not isinstance(cookies, list) or not all(isinstance(cookie, dict) for cookie in cookies):
            self.logger.warning("verified_session_cookies_corrupt", domain=domain)
            return None
        self.logger.info("verified_session_reused", domain=domain)
        return SessionIdentity(user_agent=session.user_agent, cookies=cookies)

    def _extract(self, page: FetchedPage, url: str) -> ScrapingResult:
        result = extract_product_data(page.html, url)
        if result is not None:
            return result
        if page.status >= 400:
            raise HttpStatusError(page.status, url)
        self.logger.info("no_structured_data", url=url)
        return ScrapingResult.not_found()
