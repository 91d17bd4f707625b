"""Tests for the fetch escalation state machine and the fetch tiers."""

from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Optional
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from playwright.async_api import Error as PlaywrightError
from sqlalchemy.ext.asyncio import AsyncSession

from stockwatch.config import settings
from stockwatch.core.exceptions import (
    BotProtectionError,
    ExternalError,
    HttpStatusError,
    ManualVerificationTimeout,
    ValidationError,
)
from stockwatch.models.availability_check import AvailabilityStatus
from stockwatch.scrapers.base import CapturedSession, FetchedPage, SessionIdentity
from stockwatch.scrapers.fetch_state import FetchPolicy, FetchState, next_state
from stockwatch.scrapers.headless import HeadlessFetcher
from stockwatch.scrapers.http_client import PlainFetcher
from stockwatch.scrapers.manual_verification import ManualVerifier
from stockwatch.scrapers.scraper_service import (
    BOT_PROTECTION_MESSAGE,
    CAPTCHA_REQUIRED_MESSAGE,
    AvailabilityScraper,
)
from stockwatch.scrapers.utils.browser_manager import (
    STEALTH_JS,
    BrowserManager,
    create_headless_manager,
    create_visible_manager,
)
from stockwatch.scrapers.utils.user_agents import DESKTOP_USER_AGENT
from stockwatch.services.session_service import VerifiedSessionService


URL = "https://www.shop.example.com/products/widget"

CHALLENGE_PAGE = (
    "<html><head><title>Just a moment...</title></head>"
    "<body><div id='cf-browser-verification'></div></body></html>"
)

CAPTCHA_PAGE = "<html><body><div class='g-recaptcha' data-sitekey='abc'></div></body></html>"

EMPTY_PAGE = "<html><body><h1>Widget</h1></body></html>"


class FakeFetcher:
    """Plain or headless tier returning queued pages."""

    def __init__(self, *pages: FetchedPage):
        self.pages = list(pages)
        self.calls: list[tuple[str, Optional[SessionIdentity]]] = []

    async def fetch(self, url: str, identity: Optional[SessionIdentity] = None) -> FetchedPage:
        self.calls.append((url, identity))
        return self.pages.pop(0)


class FakeManualVerifier:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls: list[str] = []

    async def verify(self, url: str) -> CapturedSession:
        self.calls.append(url)
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


def _page(html: str, status: int = 200) -> FetchedPage:
    return FetchedPage(status=status, html=html, url=URL)


# ============================================================================
# TESTS: STATE MACHINE
# ============================================================================

class TestNextState:
    """Tests for the pure transition function."""

    @pytest.mark.parametrize(
        "state,challenged,policy,expected",
        [
            (FetchState.PLAIN_FETCH, False, FetchPolicy(), FetchState.SUCCESS),
            (FetchState.PLAIN_FETCH, True, FetchPolicy(), FetchState.HEADLESS_FETCH),
            (FetchState.PLAIN_FETCH, True, FetchPolicy(headless_enabled=False), FetchState.FAILURE),
            (FetchState.HEADLESS_FETCH, False, FetchPolicy(), FetchState.SUCCESS),
            (FetchState.HEADLESS_FETCH, True, FetchPolicy(), FetchState.FAILURE),
            (
                FetchState.HEADLESS_FETCH,
                True,
                FetchPolicy(manual_verification_allowed=True),
                FetchState.MANUAL_VERIFICATION,
            ),
            (FetchState.MANUAL_VERIFICATION, False, FetchPolicy(), FetchState.SUCCESS),
            (FetchState.MANUAL_VERIFICATION, True, FetchPolicy(manual_verification_allowed=True), FetchState.FAILURE),
        ],
    )
    def test_transitions(self, state, challenged, policy, expected):
        assert next_state(state, challenged, policy) is expected

    @pytest.mark.parametrize("state", [FetchState.SUCCESS, FetchState.FAILURE])
    def test_terminal_states_have_no_successor(self, state):
        with pytest.raises(ValueError):
            next_state(state, False, FetchPolicy())


# ============================================================================
# TESTS: AVAILABILITY SCRAPER
# ============================================================================

class TestAvailabilityScraper:
    """Tests for AvailabilityScraper with fake tiers."""

    def _scraper(self, db: AsyncSession, plain, headless=None, manual=None) -> AvailabilityScraper:
        return AvailabilityScraper(
            VerifiedSessionService(db),
            plain_fetcher=plain,
            headless_fetcher=headless or FakeFetcher(),
            manual_verifier=manual or FakeManualVerifier(AssertionError("manual tier not expected")),
        )

    async def test_plain_fetch_success(self, test_db: AsyncSession, product_page):
        plain = FakeFetcher(_page(product_page()))
        headless = FakeFetcher()

        result = await self._scraper(test_db, plain, headless).check(URL, FetchPolicy())

        assert result.status == AvailabilityStatus.IN_STOCK
        assert result.price.minor_units == 1999
        assert plain.calls == [(URL, None)]
        assert headless.calls == []

    async def test_challenge_with_headless_disabled(self, test_db: AsyncSession):
        headless = FakeFetcher()
        scraper = self._scraper(test_db, FakeFetcher(_page(CHALLENGE_PAGE, 403)), headless)

        with pytest.raises(BotProtectionError) as exc_info:
            await scraper.check(URL, FetchPolicy(headless_enabled=False))

        assert exc_info.value.message == BOT_PROTECTION_MESSAGE
        assert headless.calls == []

    async def test_headless_clears_challenge(self, test_db: AsyncSession, product_page):
        plain = FakeFetcher(_page(CHALLENGE_PAGE, 503))
        headless = FakeFetcher(_page(product_page(availability="https://schema.org/OutOfStock")))

        result = await self._scraper(test_db, plain, headless).check(URL, FetchPolicy())

        assert result.status == AvailabilityStatus.OUT_OF_STOCK
        assert headless.calls == [(URL, None)]

    async def test_headless_replays_cached_session(self, test_db: AsyncSession, product_page):
        cookies = [{"name": "cf_clearance", "value": "abc", "domain": "www.shop.example.com", "path": "/"}]
        await VerifiedSessionService(test_db).upsert("www.shop.example.com", cookies, "UA/verified", ttl_days=14)
        headless = FakeFetcher(_page(product_page()))

        await self._scraper(test_db, FakeFetcher(_page(CHALLENGE_PAGE, 403)), headless).check(URL, FetchPolicy())

        _, identity = headless.calls[0]
        assert identity == SessionIdentity(user_agent="UA/verified", cookies=cookies)

    @pytest.mark.parametrize("cookies_json", ['{"name": "cf_clearance"}', '["cf_clearance"]', "not json"])
    async def test_malformed_cached_cookies_are_ignored(self, test_db: AsyncSession, product_page, cookies_json):
        session = await VerifiedSessionService(test_db).upsert("www.shop.example.com", [], "UA/verified", ttl_days=14)
        session.cookies_json = cookies_json
        await test_db.flush()
        headless = FakeFetcher(_page(product_page()))

        result = await self._scraper(test_db, FakeFetcher(_page(CHALLENGE_PAGE, 403)), headless).check(URL, FetchPolicy())

        assert result.status == AvailabilityStatus.IN_STOCK
        assert headless.calls == [(URL, None)]

    async def test_headless_still_challenged_without_manual(self, test_db: AsyncSession):
        scraper = self._scraper(
            test_db,
            FakeFetcher(_page(CHALLENGE_PAGE, 403)),
            FakeFetcher(_page(CAPTCHA_PAGE)),
        )

        with pytest.raises(BotProtectionError) as exc_info:
            await scraper.check(URL, FetchPolicy())

        assert exc_info.value.message == CAPTCHA_REQUIRED_MESSAGE

    async def test_manual_verification_stores_session(self, test_db: AsyncSession, product_page):
        captured = CapturedSession(
            html=product_page(),
            cookies=[{"name": "cf_clearance", "value": "solved", "domain": "www.shop.example.com", "path": "/"}],
            user_agent="UA/manual",
        )
        manual = FakeManualVerifier(captured)
        scraper = self._scraper(
            test_db,
            FakeFetcher(_page(CHALLENGE_PAGE, 403)),
            FakeFetcher(_page(CAPTCHA_PAGE)),
            manual,
        )

        result = await scraper.check(URL, FetchPolicy(manual_verification_allowed=True, session_ttl_days=3))

        assert result.status == AvailabilityStatus.IN_STOCK
        assert manual.calls == [URL]
        stored = await VerifiedSessionService(test_db).find("www.shop.example.com")
        assert stored is not None
        assert stored.user_agent == "UA/manual"
        assert stored.cookies == captured.cookies

    async def test_manual_verification_timeout_propagates(self, test_db: AsyncSession):
        scraper = self._scraper(
            test_db,
            FakeFetcher(_page(CHALLENGE_PAGE, 403)),
            FakeFetcher(_page(CAPTCHA_PAGE)),
            FakeManualVerifier(ManualVerificationTimeout()),
        )

        with pytest.raises(ManualVerificationTimeout, match="Manual verification timed out"):
            await scraper.check(URL, FetchPolicy(manual_verification_allowed=True))

        assert await VerifiedSessionService(test_db).find("www.shop.example.com") is None

    async def test_error_status_without_data(self, test_db: AsyncSession):
        scraper = self._scraper(test_db, FakeFetcher(_page(EMPTY_PAGE, 404)))

        with pytest.raises(HttpStatusError) as exc_info:
            await scraper.check(URL, FetchPolicy())

        assert exc_info.value.status == 404

    async def test_error_status_with_data_is_extracted(self, test_db: AsyncSession, product_page):
        scraper = self._scraper(test_db, FakeFetcher(_page(product_page(), 410)))

        result = await scraper.check(URL, FetchPolicy())

        assert result.status == AvailabilityStatus.IN_STOCK

    async def test_page_without_data_is_unknown(self, test_db: AsyncSession):
        scraper = self._scraper(test_db, FakeFetcher(_page(EMPTY_PAGE)))

        result = await scraper.check(URL, FetchPolicy())

        assert result.status == AvailabilityStatus.UNKNOWN
        assert result.price.is_present is False

    async def test_invalid_url_rejected_before_fetch(self, test_db: AsyncSession):
        plain = FakeFetcher()

        with pytest.raises(ValidationError):
            await self._scraper(test_db, plain).check("ftp://shop.example.com/widget", FetchPolicy())

        assert plain.calls == []


# ============================================================================
# TESTS: PLAIN HTTP TIER
# ============================================================================

class TestPlainFetcher:
    """Tests for PlainFetcher over a mock transport."""

    async def test_sends_browser_identity_and_cookies(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["user_agent"] = request.headers["User-Agent"]
            seen["cookie"] = request.headers.get("Cookie")
            return httpx.Response(403, text=CHALLENGE_PAGE)

        fetcher = PlainFetcher(transport=httpx.MockTransport(handler))
        identity = SessionIdentity(
            user_agent="UA/verified",
            cookies=[{"name": "cf_clearance", "value": "abc", "domain": "shop.example.com", "path": "/"}],
        )

        page = await fetcher.fetch("https://shop.example.com/p/1", identity)

        assert page.status == 403
        assert page.html == CHALLENGE_PAGE
        assert seen["user_agent"] == "UA/verified"
        assert seen["cookie"] == "cf_clearance=abc"

    async def test_anonymous_request_uses_desktop_identity(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["user_agent"] = request.headers["User-Agent"]
            return httpx.Response(200, text=EMPTY_PAGE)

        await PlainFetcher(transport=httpx.MockTransport(handler)).fetch("https://shop.example.com/p/1")

        assert "Chrome/120" in seen["user_agent"]

    async def test_transport_error_becomes_external_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadError("connection reset", request=request)

        with pytest.raises(ExternalError, match="Request failed"):
            await PlainFetcher(transport=httpx.MockTransport(handler)).fetch("https://shop.example.com/p/1")


# ============================================================================
# TESTS: BROWSER TIERS
# ============================================================================

class FakePage:
    """Stands in for a Playwright page; ``contents`` are read in order."""

    def __init__(self, *contents, closed: bool = False, status: int = 200):
        self.contents = list(contents)
        self.closed = closed
        self.status = status
        self.url = URL
        self.context = SimpleNamespace(cookies=self._cookies)
        self.visited: list[str] = []

    async def goto(self, url, wait_until=None):
        self.visited.append(url)
        return SimpleNamespace(status=self.status)

    async def wait_for_load_state(self, state, timeout=None):
        return None

    def is_closed(self) -> bool:
        return self.closed

    async def content(self) -> str:
        value = self.contents.pop(0) if len(self.contents) > 1 else self.contents[0]
        if isinstance(value, BaseException):
            raise value
        return value

    async def _cookies(self):
        return [{"name": "cf_clearance", "value": "solved"}]


class FakeBrowserManager:
    def __init__(self, page: FakePage):
        self.page = page
        self.opened_with: list[dict] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    @asynccontextmanager
    async def open_page(self, user_agent=None, cookies=None):
        self.opened_with.append({"user_agent": user_agent, "cookies": cookies})
        yield self.page


class TestHeadlessFetcher:
    """Tests for HeadlessFetcher with a fake browser."""

    async def test_renders_page_with_identity(self, product_page):
        manager = FakeBrowserManager(FakePage(product_page(), status=200))
        identity = SessionIdentity(user_agent="UA/verified", cookies=[{"name": "a", "value": "b"}])

        page = await HeadlessFetcher(lambda: manager).fetch(URL, identity)

        assert page.status == 200
        assert "application/ld+json" in page.html
        assert manager.opened_with == [{"user_agent": "UA/verified", "cookies": [{"name": "a", "value": "b"}]}]

    async def test_browser_error_becomes_external_error(self):
        manager = FakeBrowserManager(FakePage(PlaywrightError("Target closed")))

        with pytest.raises(ExternalError, match="Headless browser failed"):
            await HeadlessFetcher(lambda: manager).fetch(URL)


class TestManualVerifier:
    """Tests for the manual verification polling loop."""

    # Binary fractions keep timeout // poll exact
    POLL = 1 / 64
    TIMEOUT = 3 / 64

    def _verifier(self, page: FakePage) -> ManualVerifier:
        return ManualVerifier(
            lambda: FakeBrowserManager(page),
            timeout_seconds=self.TIMEOUT,
            poll_interval_seconds=self.POLL,
        )

    def test_max_attempts(self):
        assert self._verifier(FakePage("")).max_attempts == 3
        assert ManualVerifier(timeout_seconds=300, poll_interval_seconds=5).max_attempts == 60

    async def test_returns_first_clear_page(self, product_page):
        page = FakePage(PlaywrightError("navigating"), CAPTCHA_PAGE, product_page())

        captured = await self._verifier(page).verify(URL)

        assert "application/ld+json" in captured.html
        assert captured.cookies == [{"name": "cf_clearance", "value": "solved"}]
        assert "Chrome/120" in captured.user_agent
        assert page.visited == [URL]

    async def test_times_out_while_challenged(self):
        with pytest.raises(ManualVerificationTimeout) as exc_info:
            await self._verifier(FakePage(CAPTCHA_PAGE)).verify(URL)

        assert exc_info.value.message == "Manual verification timed out. Please try again."

    async def test_closed_window(self):
        with pytest.raises(ExternalError, match="window was closed"):
            await self._verifier(FakePage(CAPTCHA_PAGE, closed=True)).verify(URL)


# ============================================================================
# TESTS: BROWSER MANAGER
# ============================================================================

def _fake_playwright() -> MagicMock:
    browser_page = MagicMock()
    browser_page.close = AsyncMock()
    context = MagicMock()
    context.add_init_script = AsyncMock()
    context.add_cookies = AsyncMock()
    context.new_page = AsyncMock(return_value=browser_page)
    context.close = AsyncMock()

    playwright = MagicMock()
    playwright.stop = AsyncMock()
    playwright.chromium.launch_persistent_context = AsyncMock(return_value=context)
    playwright.chromium.launch = AsyncMock()
    return playwright


class TestBrowserManager:
    """Tests for BrowserManager launch modes with a mocked Playwright driver."""

    async def test_persistent_profile(self, tmp_path):
        playwright = _fake_playwright()
        context = playwright.chromium.launch_persistent_context.return_value
        cookies = [{"name": "cf_clearance", "value": "solved", "domain": "shop.example.com", "path": "/"}]

        with patch("stockwatch.scrapers.utils.browser_manager.async_playwright") as driver:
            driver.return_value.start = AsyncMock(return_value=playwright)
            async with BrowserManager(user_data_dir=str(tmp_path)) as manager:
                async with manager.open_page(cookies=cookies) as page:
                    assert page is context.new_page.return_value

        args, kwargs = playwright.chromium.launch_persistent_context.call_args
        assert args == (str(tmp_path),)
        assert kwargs["chromium_sandbox"] is True
        assert kwargs["user_agent"] == DESKTOP_USER_AGENT
        playwright.chromium.launch.assert_not_called()
        context.add_init_script.assert_awaited_once_with(STEALTH_JS)
        context.add_cookies.assert_awaited_once_with(cookies)
        page.close.assert_awaited_once()
        context.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()

    async def test_without_profile_launches_plain_browser(self):
        playwright = _fake_playwright()

        with patch("stockwatch.scrapers.utils.browser_manager.async_playwright") as driver:
            driver.return_value.start = AsyncMock(return_value=playwright)
            async with BrowserManager():
                pass

        playwright.chromium.launch.assert_awaited_once()
        playwright.chromium.launch_persistent_context.assert_not_called()

    def test_factories_read_profile_setting(self, monkeypatch):
        monkeypatch.setattr(settings, "BROWSER_USER_DATA_DIR", " /var/lib/stockwatch/profile ")

        assert create_headless_manager()._user_data_dir == "/var/lib/stockwatch/profile"
        assert create_visible_manager()._user_data_dir == "/var/lib/stockwatch/profile"
