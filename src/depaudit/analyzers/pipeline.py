"""End-to-end dependency analysis pipeline."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable

import httpx

from depaudit.adapters.base import BaseRegistryAdapter
from depaudit.adapters.npm import NpmAdapter
from depaudit.analyzers.base import BaseScanner
from depaudit.analyzers.cache import AnalysisCache
from depaudit.analyzers.deny_list import DenyListRegistry
from depaudit.analyzers.metadata_graph import MetadataGraphScanner
from depaudit.analyzers.sandbox import SandboxInstallScanner
from depaudit.config import Settings
from depaudit.fetcher import RetryingFetcher
from depaudit.models.schemas import AnalysisResult, KnownBadSet, PackageIdentity, ScanStrategy
from depaudit.monitoring import MetricsCollector

logger = logging.getLogger(__name__)


def create_scanner(
    strategy: ScanStrategy,
    settings: Settings,
    deny_list: DenyListRegistry,
    adapter: BaseRegistryAdapter | None = None,
) -> BaseScanner:
    """Build the scanner for a strategy.

    Args:
        strategy: Which scan strategy to use.
        settings: Engine settings.
        deny_list: Shared deny-list registry.
        adapter: Registry adapter, required for the metadata strategy.

    Returns:
        Configured scanner.
    """
    if strategy == ScanStrategy.METADATA:
        if adapter is None:
            raise ValueError("The metadata strategy needs a registry adapter")
        return MetadataGraphScanner(
            adapter=adapter,
            deny_list=deny_list,
            max_depth=settings.max_depth,
            batch_size=settings.batch_size,
        )
    if strategy == ScanStrategy.SANDBOX:
        return SandboxInstallScanner(
            deny_list=deny_list,
            package_manager=settings.package_manager,
            install_timeout=settings.install_timeout,
        )
    raise ValueError(f"Unsupported scan strategy: {strategy}")


class AnalysisPipeline:
    """Orchestrates dependency analysis for packages.

    Pipeline stages:
    1. Return the cached verdict if there is one
    2. Run the configured scan strategy (which consults the deny-list)
    3. Cache and return the verdict

    Concurrent requests for the same release share one scan.
    """

    def __init__(
        self,
        scanner: BaseScanner,
        deny_list: DenyListRegistry,
        cache: AnalysisCache | None = None,
        metrics: MetricsCollector | None = None,
        max_concurrent_scans: int = 8,
        fetcher: RetryingFetcher | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            scanner: Scan strategy to run on cache misses.
            deny_list: Deny-list registry used by the scanner.
            cache: Verdict cache. A private one is created if omitted.
            metrics: Optional metrics collector.
            max_concurrent_scans: Bound for ``analyze_many``.
            fetcher: Fetcher to close with the pipeline, if it owns one.
        """
        self.scanner = scanner
        self.deny_list = deny_list
        self.cache = cache if cache is not None else AnalysisCache()
        self.metrics = metrics
        self.max_concurrent_scans = max_concurrent_scans
        self._fetcher = fetcher
        self._inflight: dict[str, asyncio.Future[AnalysisResult]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        strategy: ScanStrategy | None = None,
        client: httpx.AsyncClient | None = None,
        cache: AnalysisCache | None = None,
        metrics: MetricsCollector | None = None,
    ) -> AnalysisPipeline:
        """Wire a pipeline from settings.

        Args:
            settings: Engine settings.
            strategy: Overrides ``settings.scan_strategy``.
            client: Optional httpx client for the fetcher.
            cache: Optional shared cache.
            metrics: Optional metrics collector.

        Returns:
            Pipeline owning a new fetcher.
        """
        fetcher = RetryingFetcher(
            client=client,
            max_retries=settings.max_retries,
            timeout=settings.request_timeout,
            primary_concurrency=settings.primary_concurrency,
            primary_origin=settings.primary_registry_url,
        )
        deny_list = DenyListRegistry(fetcher, settings.deny_list_url, ttl=settings.deny_list_ttl)
        adapter = NpmAdapter(fetcher, registry_url=settings.registry_url)
        scanner = create_scanner(strategy or settings.scan_strategy, settings, deny_list, adapter)
        return cls(
            scanner=scanner,
            deny_list=deny_list,
            cache=cache,
            metrics=metrics,
            max_concurrent_scans=settings.max_concurrent_scans,
            fetcher=fetcher,
        )

    async def __aenter__(self) -> AnalysisPipeline:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the owned fetcher."""
        if self._fetcher is not None:
            await self._fetcher.aclose()

    async def analyze_package(self, name: str, version: str) -> AnalysisResult:
        """Analyze one release. Never raises for scan failures."""
        return await self.analyze(PackageIdentity(name=name, version=version))

    async def analyze(self, identity: PackageIdentity) -> AnalysisResult:
        """Analyze one release, using the cache when possible."""
        cached = self.cache.get(identity)
        if cached is not None:
            logger.debug(f"Cache hit for {identity}")
            if self.metrics:
                self.metrics.record_cache_hit()
            return cached

        future = self._inflight.get(identity.key)
        if future is None:
            future = asyncio.ensure_future(self._run_scan(identity))
            self._inflight[identity.key] = future
            future.add_done_callback(lambda _: self._inflight.pop(identity.key, None))
        return await asyncio.shield(future)

    async def analyze_many(
        self,
        identities: Iterable[PackageIdentity],
        on_result: Callable[[PackageIdentity, AnalysisResult], None] | None = None,
    ) -> list[tuple[PackageIdentity, AnalysisResult]]:
        """Analyze releases concurrently, at most ``max_concurrent_scans`` at a time.

        Args:
            identities: Releases to analyze.
            on_result: Called with each identity and its result as it finishes.

        Returns:
            (identity, result) pairs in input order.
        """
        semaphore = asyncio.Semaphore(self.max_concurrent_scans)
        identities = list(identities)

        async def bounded(identity: PackageIdentity) -> AnalysisResult:
            async with semaphore:
                result = await self.analyze(identity)
            if on_result is not None:
                on_result(identity, result)
            return result

        results = await asyncio.gather(*(bounded(identity) for identity in identities))
        return list(zip(identities, results))

    async def _run_scan(self, identity: PackageIdentity) -> AnalysisResult:
        strategy = self.scanner.strategy
        if self.metrics:
            self.metrics.start_scan()
        start = time.monotonic()

        try:
            result = await self.scanner.scan(identity)
        except Exception as e:
            # Scanners report failures in the result; this guards the contract
            logger.exception(f"Scanner {strategy.value} raised for {identity}")
            result = AnalysisResult(error=str(e) or type(e).__name__, strategy=strategy)

        self.cache.set(identity, result)
        duration = time.monotonic() - start

        if result.error:
            logger.warning(f"Analysis of {identity} finished with error: {result.error}")
        elif result.is_insecure:
            logger.info(f"{identity} depends on insecure packages: {', '.join(result.insecure_packages)}")
        else:
            logger.debug(f"{identity} analyzed in {duration:.2f}s, no insecure packages")

        if self.metrics:
            self.metrics.complete_scan(
                identity.key,
                strategy.value,
                duration,
                insecure=result.is_insecure,
                error=result.error,
            )
        return result

    async def refresh_deny_list(self) -> KnownBadSet:
        """Reload the deny-list and drop cached verdicts computed against the old one."""
        snapshot = await self.deny_list.refresh()
        self.cache.clear()
        return snapshot

    def clear_cache(self) -> None:
        """Drop every cached verdict."""
        self.cache.clear()

    @property
    def cache_size(self) -> int:
        return self.cache.size()
