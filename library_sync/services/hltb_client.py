"""HowLongToBeat estimate source and its session token capture."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol

import httpx
import pydantic
import structlog
from playwright.async_api import Request, async_playwright

from ..models.game import EnrichedRecord, now_millis
from .errors import AuthCaptureTimeout, FailureReason, classify_exception
from .http_client import HttpClientService
from .schemas import HltbGame, HltbSearchResponse, SourceResult

log = structlog.stdlib.get_logger()

HLTB_BASE_URL = "https://howlongtobeat.com"
HLTB_SEARCH_URL = f"{HLTB_BASE_URL}/api/search"
HLTB_TOKEN_PAGE_URL = f"{HLTB_BASE_URL}/?q=test"
HLTB_AUTH_HEADER = "x-auth-token"

HLTB_REQUEST_DELAY = 1.5
HLTB_FAILURE_DELAY_STEP = 1.0
HLTB_RECAPTURE_DELAY = 5.0
HLTB_MAX_FAILURES = 10
AUTH_CAPTURE_TIMEOUT = 30.0

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

Sleep = Callable[[float], Awaitable[None]]


class AuthTokenProvider(Protocol):
    async def capture(self) -> str:
        """Return a fresh session token, or raise AuthCaptureTimeout."""
        ...


class StaticTokenProvider:
    """Hands out a token obtained elsewhere, e.g. copied from a browser session."""

    def __init__(self, token: str) -> None:
        self.token = token

    async def capture(self) -> str:
        return self.token


class PlaywrightTokenProvider:
    """Captures the token from the site's own search request in a headless browser.

    The site signs its search API with a short-lived header that its frontend
    obtains by itself; loading a search page and intercepting that request is
    the only way to get one.
    """

    def __init__(self, timeout: float = AUTH_CAPTURE_TIMEOUT, headless: bool = True) -> None:
        self.timeout = timeout
        self.headless = headless

    async def capture(self) -> str:
        log.info("Capturing estimate source auth token", timeout=self.timeout)
        try:
            token = await asyncio.wait_for(self._capture(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise AuthCaptureTimeout("Timed out waiting for the estimate source auth token", self.timeout) from e

        log.info("Captured estimate source auth token")
        return token

    async def _capture(self) -> str:
        token_future: asyncio.Future[str] = asyncio.get_running_loop().create_future()

        def on_request(request: Request) -> None:
            if (
                request.resource_type in ("xhr", "fetch")
                and request.method == "POST"
                and "/api/search" in request.url
            ):
                token = request.headers.get(HLTB_AUTH_HEADER)
                if token and not token_future.done():
                    token_future.set_result(token)

        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=self.headless)
            try:
                context = await browser.new_context(
                    user_agent=BROWSER_USER_AGENT,
                    viewport={"width": 1280, "height": 720},
                    locale="en-US",
                )
                page = await context.new_page()
                page.on("request", on_request)
                await page.goto(HLTB_TOKEN_PAGE_URL, wait_until="domcontentloaded")
                return await token_future
            finally:
                await browser.close()


class HltbClient:
    """Searches the estimate source with a captured session token.

    Holds the session: the token, the consecutive failure count, and the
    delay policy derived from it. The delay before each search grows by
    ``failure_delay_step`` per consecutive failure; a success resets it.
    """

    def __init__(
        self,
        http_client: HttpClientService,
        token_provider: AuthTokenProvider,
        request_delay: float = HLTB_REQUEST_DELAY,
        failure_delay_step: float = HLTB_FAILURE_DELAY_STEP,
        recapture_delay: float = HLTB_RECAPTURE_DELAY,
        max_failures: int = HLTB_MAX_FAILURES,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.http_client = http_client
        self.token_provider = token_provider
        self.request_delay = request_delay
        self.failure_delay_step = failure_delay_step
        self.recapture_delay = recapture_delay
        self.max_failures = max_failures
        self._sleep = sleep
        self.token: str | None = None
        self.consecutive_failures = 0

    @property
    def current_delay(self) -> float:
        return self.request_delay + self.failure_delay_step * self.consecutive_failures

    @property
    def exhausted(self) -> bool:
        return self.consecutive_failures >= self.max_failures

    async def start(self) -> None:
        """Capture the first token of a layer run.

        Raises:
            AuthCaptureTimeout: If no token could be captured
        """
        self.consecutive_failures = 0
        self.token = await self.token_provider.capture()

    async def recover(self) -> None:
        """Wait, then capture a new token after a failed search.

        Raises:
            AuthCaptureTimeout: If no token could be captured
        """
        log.info("Re-capturing estimate source auth token", delay=self.recapture_delay)
        await self._sleep(self.recapture_delay)
        self.token = await self.token_provider.capture()

    async def fetch(self, name: str) -> SourceResult[HltbGame]:
        """Search for ``name`` and return the best match, or None when nothing matched."""
        await self._sleep(self.current_delay)

        headers = {
            "Content-Type": "application/json",
            "Origin": HLTB_BASE_URL,
            "Referer": f"{HLTB_BASE_URL}/",
            "User-Agent": BROWSER_USER_AGENT,
        }
        if self.token:
            headers[HLTB_AUTH_HEADER] = self.token

        try:
            response = await self.http_client.post(
                HLTB_SEARCH_URL,
                json=build_search_body(name),
                headers=headers,
                rate_limit_key="hltb",
                min_interval=0.0,
                max_retries=0,
            )
        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            return self._failed(name, classify_exception(e), str(e))

        try:
            payload = HltbSearchResponse.model_validate(response.json())
        except (ValueError, pydantic.ValidationError) as e:
            return self._failed(name, FailureReason.MALFORMED, str(e))

        self.consecutive_failures = 0
        if not payload.data:
            return SourceResult.success(None)
        return SourceResult.success(payload.data[0])

    def _failed(self, name: str, reason: FailureReason, message: str) -> SourceResult[HltbGame]:
        self.consecutive_failures += 1
        log.warning(
            "Estimate search failed",
            name=name,
            reason=reason.value,
            consecutive_failures=self.consecutive_failures,
            next_delay=self.current_delay,
        )
        return SourceResult.failure(reason, message)


def clean_search_term(name: str) -> str:
    return name.replace("™", "").replace("®", "").strip()


def build_search_body(name: str) -> dict:
    return {
        "searchType": "games",
        "searchTerms": [clean_search_term(name)],
        "searchPage": 1,
        "size": 20,
        "searchOptions": {
            "games": {
                "userId": 0,
                "platform": "",
                "sortCategory": "popular",
                "rangeCategory": "main",
                "rangeTime": {"min": None, "max": None},
                "gameplay": {"perspective": "", "flow": "", "genre": "", "difficulty": ""},
                "rangeYear": {"min": "", "max": ""},
                "modifier": "",
            },
            "users": {"sortCategory": "postcount"},
            "lists": {"sortCategory": "follows"},
            "filter": "",
            "sort": 0,
            "randomizer": 0,
        },
        "useCache": True,
    }


def seconds_to_hours(seconds: int) -> int:
    """Whole hours, rounded to nearest (exact halves go to the even neighbour)."""
    return round(seconds / 3600)


def game_url(game_id: int) -> str:
    return f"{HLTB_BASE_URL}/game/{game_id}"


def apply_estimate(record: EnrichedRecord, game: HltbGame) -> None:
    """Fill the estimate layer of ``record`` from a search match."""
    record.hltb_name = game.game_name
    record.hltb_hours = seconds_to_hours(game.comp_main)
    record.hltb_hours_extra = seconds_to_hours(game.comp_plus)
    record.hltb_hours_completionist = seconds_to_hours(game.comp_100)
    record.hltb_url = game_url(game.game_id)
    record.last_hltb_update_timestamp = now_millis()


def discard_estimate(record: EnrichedRecord) -> None:
    """Drop a rejected match but keep the layer timestamp so it is not searched again."""
    record.hltb_name = None
    record.hltb_hours = None
    record.hltb_hours_extra = None
    record.hltb_hours_completionist = None
    record.hltb_url = None
    record.last_hltb_update_timestamp = now_millis()
