"""HTTP client service with retry logic and rate limiting."""

import asyncio
import time
from typing import Any

import httpx
import structlog

log = structlog.stdlib.get_logger()


class HttpClientService:
    """HTTP client service with retry logic, per-source rate limiting, and timeout handling.

    One instance is shared by every catalog source. Each source passes its own
    ``rate_limit_key`` and ``min_interval`` so that delays are tracked per source.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        rate_limit_delay: float = 0.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the HTTP client service.

        Args:
            timeout: Request timeout in seconds
            max_retries: Default maximum number of retry attempts
            base_delay: Base delay for exponential backoff in seconds
            max_delay: Maximum delay between retries in seconds
            rate_limit_delay: Default minimum delay between requests of one source
            client: Preconfigured httpx client (tests pass one with a mock transport)
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.rate_limit_delay = rate_limit_delay
        self._last_request_times: dict[str, float] = {}

        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={
                "User-Agent": "library-sync/0.1 (personal library synchronization)"
            },
            follow_redirects=True,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

        log.info(
            "HTTP client service initialized",
            timeout=timeout,
            max_retries=max_retries,
            rate_limit_delay=rate_limit_delay,
        )

    async def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        rate_limit_key: str = "default",
        min_interval: float | None = None,
        max_retries: int | None = None,
    ) -> httpx.Response:
        """Make a GET request with retry logic and rate limiting."""
        return await self.request(
            "GET",
            url,
            headers=headers,
            params=params,
            rate_limit_key=rate_limit_key,
            min_interval=min_interval,
            max_retries=max_retries,
        )

    async def post(
        self,
        url: str,
        json: Any = None,
        headers: dict[str, str] | None = None,
        rate_limit_key: str = "default",
        min_interval: float | None = None,
        max_retries: int | None = None,
    ) -> httpx.Response:
        """Make a POST request with a JSON body."""
        return await self.request(
            "POST",
            url,
            headers=headers,
            json=json,
            rate_limit_key=rate_limit_key,
            min_interval=min_interval,
            max_retries=max_retries,
        )

    async def patch(
        self,
        url: str,
        json: Any = None,
        headers: dict[str, str] | None = None,
        rate_limit_key: str = "default",
        min_interval: float | None = None,
        max_retries: int | None = None,
    ) -> httpx.Response:
        """Make a PATCH request with a JSON body."""
        return await self.request(
            "PATCH",
            url,
            headers=headers,
            json=json,
            rate_limit_key=rate_limit_key,
            min_interval=min_interval,
            max_retries=max_retries,
        )

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        json: Any = None,
        rate_limit_key: str = "default",
        min_interval: float | None = None,
        max_retries: int | None = None,
    ) -> httpx.Response:
        """Make a request with retry logic and rate limiting.

        Args:
            method: HTTP method
            url: The URL to request
            headers: Optional additional headers
            params: Optional query parameters
            json: Optional JSON body
            rate_limit_key: Which source's request clock to use
            min_interval: Minimum seconds since the previous request of that source
            max_retries: Override of the default retry count (0 disables retries)

        Returns:
            HTTP response object

        Raises:
            httpx.HTTPStatusError: On a client error, or a server error after all retries
            httpx.RequestError: If the transport fails after all retries
        """
        retries = self.max_retries if max_retries is None else max_retries

        merged_headers = self._client.headers.copy()
        if headers:
            merged_headers.update(headers)

        for attempt in range(retries + 1):
            await self._enforce_rate_limit(rate_limit_key, min_interval)

            try:
                log.debug(
                    "Making HTTP request",
                    method=method,
                    url=url,
                    attempt=attempt + 1,
                    max_attempts=retries + 1
                )

                response = await self._client.request(
                    method,
                    url,
                    headers=merged_headers,
                    params=params,
                    json=json,
                )
                response.raise_for_status()

                log.debug(
                    "HTTP request successful",
                    method=method,
                    url=url,
                    status_code=response.status_code,
                    content_length=len(response.content)
                )

                return response

            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                log.warning(
                    "HTTP request failed",
                    method=method,
                    url=url,
                    attempt=attempt + 1,
                    error=str(e),
                    error_type=type(e).__name__
                )

                # Don't retry on client errors (4xx) except for rate limiting
                if isinstance(e, httpx.HTTPStatusError):
                    if e.response.status_code == 429:
                        retry_after = e.response.headers.get("retry-after")
                        if retry_after and attempt < retries:
                            try:
                                delay = min(float(retry_after), self.max_delay)
                                log.info("Rate limited, waiting", delay=delay)
                                await asyncio.sleep(delay)
                                continue
                            except ValueError:
                                pass
                    elif 400 <= e.response.status_code < 500:
                        log.error("Client error, not retrying", url=url, status_code=e.response.status_code)
                        raise

                if attempt == retries:
                    log.error(
                        "HTTP request failed after all retries",
                        method=method,
                        url=url,
                        total_attempts=retries + 1
                    )
                    raise

                delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                log.info("Retrying after delay", delay=delay)
                await asyncio.sleep(delay)

        # This should never be reached, but satisfy type checker
        raise RuntimeError("Unexpected end of retry loop")

    async def _enforce_rate_limit(self, key: str, min_interval: float | None) -> None:
        """Sleep until ``min_interval`` has passed since the previous request for ``key``.

        The first request of a source waits the full interval too, so a run that
        starts right after another one cannot burst past the limit.
        """
        interval = self.rate_limit_delay if min_interval is None else min_interval
        last_request_time = self._last_request_times.get(key)

        if interval > 0:
            time_since_last = 0.0 if last_request_time is None else time.monotonic() - last_request_time
            if time_since_last < interval:
                sleep_time = interval - time_since_last
                log.debug("Rate limiting: sleeping", source=key, sleep_time=sleep_time)
                await asyncio.sleep(sleep_time)

        self._last_request_times[key] = time.monotonic()

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._client.aclose()
        log.info("HTTP client closed")

    async def __aenter__(self) -> "HttpClientService":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: type[Exception] | None, exc_val: Exception | None, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
