"""Retrying HTTP fetcher with backpressure and per-origin concurrency limits."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)

# Transport failures that indicate the peer dropped the connection.
CONNECTION_RESET_ERRORS: tuple[type[BaseException], ...] = (
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
    httpx.ConnectError,
    ConnectionResetError,
)


class FetchError(Exception):
    """Raised when a request still fails after all retries."""

    def __init__(
        self,
        url: str,
        message: str,
        status_code: int | None = None,
        attempts: int = 0,
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(f"{message} for {url} after {attempts} attempt(s)")


class _RateLimited(Exception):
    """Internal signal for a 429 response."""

    def __init__(self, retry_after: float | None) -> None:
        self.retry_after = retry_after
        super().__init__("429 Too Many Requests")


class _BadStatus(Exception):
    """Internal signal for a retryable non-2xx response."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"HTTP error {status_code}")


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header given in whole seconds."""
    if not value:
        return None
    try:
        seconds = int(value.strip())
    except ValueError:
        # HTTP-date form is not honored; callers fall back to exponential backoff
        return None
    return float(seconds) if seconds > 0 else None


class RetryingFetcher:
    """HTTP client that retries transient failures with backoff.

    - 429: waits ``Retry-After`` seconds if given, else ``2 ** attempt`` seconds
    - connection resets: ``2 ** attempt`` seconds
    - other non-2xx (except 404), timeouts: flat 1 second
    - 404: returned to the caller as "absent"

    Requests flagged ``primary_origin`` are admitted through a semaphore that
    bounds in-flight requests to the stricter upstream registry. One fetcher
    instance should be shared by every scan hitting that origin.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        max_retries: int = 3,
        timeout: float = 10.0,
        primary_concurrency: int = 5,
        primary_origin: str | None = "https://registry.npmjs.org",
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            client: Optional httpx client. If not provided, one is created on
                first use and closed by ``aclose``.
            max_retries: Default number of attempts per request.
            timeout: Per-request timeout in seconds.
            primary_concurrency: Maximum in-flight requests to the primary origin.
            primary_origin: Base URL of the rate-limited upstream registry.
            sleep: Awaitable sleep used for backoff (``asyncio.sleep`` by default).
        """
        self._client = client
        self._owns_client = client is None
        self.max_retries = max_retries
        self.timeout = timeout
        self.primary_origin = _origin(primary_origin) if primary_origin else None
        self._primary_limiter = asyncio.Semaphore(primary_concurrency)
        self._sleep = sleep or asyncio.sleep

    async def __aenter__(self) -> RetryingFetcher:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def is_primary_origin(self, url: str) -> bool:
        """Whether ``url`` targets the rate-limited primary origin."""
        return self.primary_origin is not None and _origin(url) == self.primary_origin

    async def _request_once(
        self,
        url: str,
        method: str,
        headers: dict | None,
    ) -> httpx.Response:
        client = await self._get_client()
        response = await client.request(method, url, headers=headers or {}, timeout=self.timeout)
        if response.status_code == 429:
            raise _RateLimited(parse_retry_after(response.headers.get("Retry-After")))
        return response

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: dict | None = None,
        max_retries: int | None = None,
        parse_json: bool = True,
        primary_origin: bool = False,
    ) -> Any:
        """Fetch a URL with retries.

        Args:
            url: URL to request.
            method: HTTP method.
            headers: Extra request headers.
            max_retries: Attempts for this request (defaults to the instance value).
            parse_json: Return the decoded JSON body instead of the response.
            primary_origin: Route through the primary-origin concurrency limiter.

        Returns:
            Decoded JSON (``None`` for a 404) when ``parse_json`` is set,
            otherwise the ``httpx.Response`` (404 included).

        Raises:
            FetchError: If the final attempt fails.
        """
        retries = max_retries if max_retries is not None else self.max_retries
        retries = max(retries, 1)

        for attempt in range(retries):
            is_last_attempt = attempt == retries - 1
            try:
                if primary_origin:
                    async with self._primary_limiter:
                        response = await self._request_once(url, method, headers)
                else:
                    response = await self._request_once(url, method, headers)

                if response.status_code == 404:
                    logger.debug(f"Not found: {url}")
                    return None if parse_json else response
                if not response.is_success:
                    raise _BadStatus(response.status_code)

                if parse_json:
                    return response.json()
                return response

            except _RateLimited as e:
                if is_last_attempt:
                    logger.error(f"Final attempt failed for {url}: rate limited")
                    raise FetchError(url, "Rate limited", 429, attempt + 1) from e
                wait = e.retry_after if e.retry_after is not None else 2**attempt
                logger.warning(
                    f"Retry {attempt + 1}/{retries} for {url} failed with 429. "
                    f"Waiting {wait:g}s..."
                )
                await self._sleep(wait)

            except CONNECTION_RESET_ERRORS as e:
                if is_last_attempt:
                    logger.error(f"Final attempt failed for {url}: {e!r}")
                    raise FetchError(url, f"Connection reset ({e!r})", None, attempt + 1) from e
                wait = 2**attempt
                logger.warning(
                    f"Retry {attempt + 1}/{retries} for {url} failed with connection reset. "
                    f"Waiting {wait:g}s..."
                )
                await self._sleep(wait)

            except (_BadStatus, httpx.HTTPError, ValueError) as e:
                status_code = getattr(e, "status_code", None)
                if is_last_attempt:
                    logger.error(f"Final attempt failed for {url}: {e}")
                    raise FetchError(url, str(e) or type(e).__name__, status_code, attempt + 1) from e
                logger.warning(f"Retry {attempt + 1}/{retries} for {url} failed: {e}. Retrying...")
                await self._sleep(1)

        # Unreachable: the last attempt either returns or raises
        raise FetchError(url, "Request failed", None, retries)


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}".lower()
