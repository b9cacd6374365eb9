"""Remote deny-list of insecure package names."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from depaudit.fetcher import FetchError, RetryingFetcher
from depaudit.models.schemas import KnownBadSet

logger = logging.getLogger(__name__)


def parse_deny_list(data: object) -> frozenset[str]:
    """Extract package names from a deny-list document.

    Accepts a JSON array of names, an object keyed by name, or an object
    with a ``packages`` array.
    """
    if isinstance(data, dict) and isinstance(data.get("packages"), list):
        data = data["packages"]
    if isinstance(data, dict):
        return frozenset(name for name in data if isinstance(name, str) and name)
    if isinstance(data, list):
        return frozenset(name for name in data if isinstance(name, str) and name)
    raise ValueError(f"Unexpected deny-list document: {type(data).__name__}")


class DenyListRegistry:
    """Loads and caches the external deny-list.

    The snapshot is refreshed once it is older than ``ttl`` seconds. A failed
    refresh keeps the previous snapshot; with no previous snapshot the
    built-in unsafe set is all that is checked. After a failure the source is
    not contacted again until ``retry_interval`` seconds have passed.
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        url: str | None,
        ttl: float = 3600.0,
        retry_interval: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the registry.

        Args:
            fetcher: Shared retrying fetcher.
            url: Deny-list URL. None disables the external list.
            ttl: Seconds a loaded snapshot stays fresh.
            retry_interval: Seconds to wait after a failed load before trying
                again. Defaults to ``min(ttl, 60)``.
            clock: Monotonic clock, injectable for tests.
        """
        self._fetcher = fetcher
        self.url = url
        self.ttl = ttl
        self.retry_interval = retry_interval if retry_interval is not None else min(ttl, 60.0)
        self._clock = clock
        self._snapshot: KnownBadSet | None = None
        self._fetched_at: float | None = None
        self._failed_at: float | None = None
        self._builtin_only = KnownBadSet(source_available=False)
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> KnownBadSet | None:
        """Last loaded snapshot, if any."""
        return self._snapshot

    def _is_fresh(self) -> bool:
        if self._snapshot is None or self._fetched_at is None:
            return False
        return self._clock() - self._fetched_at < self.ttl

    def _in_backoff(self) -> bool:
        if self._failed_at is None:
            return False
        return self._clock() - self._failed_at < self.retry_interval

    def _current(self) -> KnownBadSet:
        return self._snapshot if self._snapshot is not None else self._builtin_only

    async def load(self) -> KnownBadSet:
        """Return the current deny-list snapshot, fetching it if stale.

        Never raises.
        """
        if self._is_fresh() or self._in_backoff():
            return self._current()
        async with self._lock:
            # Another task may have refreshed or failed while we waited
            if self._is_fresh() or self._in_backoff():
                return self._current()
            return await self._fetch()

    async def refresh(self) -> KnownBadSet:
        """Force a reload of the deny-list."""
        async with self._lock:
            return await self._fetch()

    async def _fetch(self) -> KnownBadSet:
        if not self.url:
            self._snapshot = self._builtin_only
            self._fetched_at = self._clock()
            return self._snapshot

        try:
            data = await self._fetcher.fetch(
                self.url,
                primary_origin=self._fetcher.is_primary_origin(self.url),
            )
            if data is None:
                raise ValueError("deny-list not found")
            names = parse_deny_list(data)
        except (FetchError, ValueError) as e:
            self._failed_at = self._clock()
            logger.warning(
                f"Failed to load deny-list from {self.url}: {e}. "
                f"Retrying in {self.retry_interval:g}s"
            )
            return self._current()

        self._snapshot = KnownBadSet(external=names, source_available=True)
        self._fetched_at = self._clock()
        self._failed_at = None
        logger.info(f"Loaded {len(names)} deny-listed packages from {self.url}")
        return self._snapshot
