"""Shared fixtures for depaudit tests (no network or package manager required)."""

from __future__ import annotations

import asyncio

import httpx
import pytest
import pytest_asyncio

from depaudit.adapters.npm import NpmAdapter
from depaudit.analyzers.deny_list import DenyListRegistry
from depaudit.fetcher import RetryingFetcher
from depaudit.models.schemas import KnownBadSet

REGISTRY_URL = "https://registry.test"
DENY_LIST_URL = "https://lists.test/insecure.json"


class FakeRegistry:
    """In-memory npm registry served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.packages: dict[str, dict] = {}
        self.requests: list[str] = []
        self.failing: set[str] = set()
        self.deny_list: object = None
        self.deny_list_status = 200
        self.deny_list_requests = 0
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    def add(
        self,
        name: str,
        version: str = "1.0.0",
        dependencies: dict | None = None,
        peer: dict | None = None,
        optional: dict | None = None,
    ) -> None:
        doc = self.packages.setdefault(name, {"name": name, "dist-tags": {}, "versions": {}})
        manifest: dict = {"name": name, "version": version}
        if dependencies is not None:
            manifest["dependencies"] = dependencies
        if peer is not None:
            manifest["peerDependencies"] = peer
        if optional is not None:
            manifest["optionalDependencies"] = optional
        doc["versions"][version] = manifest
        doc["dist-tags"]["latest"] = version

    def requested(self, name: str) -> int:
        return self.requests.count(name)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "lists.test":
            self.deny_list_requests += 1
            if self.deny_list_status != 200:
                return httpx.Response(self.deny_list_status)
            return httpx.Response(200, json=self.deny_list)

        name = request.url.path.lstrip("/")
        self.requests.append(name)

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        if name in self.failing:
            return httpx.Response(500)
        doc = self.packages.get(name)
        if doc is None:
            return httpx.Response(404, json={"error": "Not found"})
        return httpx.Response(200, json=doc)


class StaticDenyList:
    """Deny-list stand-in returning a fixed snapshot."""

    def __init__(self, *names: str) -> None:
        self.snapshot = KnownBadSet(external=frozenset(names), source_available=True)
        self.loads = 0

    async def load(self) -> KnownBadSet:
        self.loads += 1
        return self.snapshot

    async def refresh(self) -> KnownBadSet:
        return await self.load()


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest_asyncio.fixture
async def http_client(registry):
    client = httpx.AsyncClient(transport=httpx.MockTransport(registry.handler))
    yield client
    await client.aclose()


@pytest.fixture
def fetcher(http_client, sleeps) -> RetryingFetcher:
    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return RetryingFetcher(client=http_client, max_retries=3, sleep=fake_sleep)


@pytest.fixture
def adapter(fetcher) -> NpmAdapter:
    return NpmAdapter(fetcher, registry_url=REGISTRY_URL)


@pytest.fixture
def deny_list(fetcher) -> DenyListRegistry:
    return DenyListRegistry(fetcher, DENY_LIST_URL)
