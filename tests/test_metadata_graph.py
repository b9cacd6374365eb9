"""Tests for the registry-metadata graph scanner."""

from __future__ import annotations

from depaudit.analyzers.metadata_graph import MetadataGraphScanner
from depaudit.models.schemas import PackageIdentity, ScanStrategy
from tests.conftest import StaticDenyList


def pkg(name: str, version: str = "1.0.0") -> PackageIdentity:
    return PackageIdentity(name=name, version=version)


class TestVerdicts:
    async def test_package_without_dependencies_is_clean(self, registry, adapter):
        registry.add("left-pad", "1.3.0")
        scanner = MetadataGraphScanner(adapter, StaticDenyList())

        result = await scanner.scan(pkg("left-pad", "1.3.0"))

        assert not result.is_insecure
        assert result.insecure_packages == []
        assert result.error is None
        assert result.strategy == ScanStrategy.METADATA

    async def test_builtin_unsafe_direct_dependency(self, registry, adapter):
        registry.add("image-tool", dependencies={"sharp": "^0.32.0"})
        registry.add("sharp", "0.32.1")
        scanner = MetadataGraphScanner(adapter, StaticDenyList())

        result = await scanner.scan(pkg("image-tool"))

        assert result.is_insecure
        assert result.insecure_packages == ["sharp"]

    async def test_deny_listed_transitive_dependency(self, registry, adapter):
        registry.add("app", dependencies={"middle": "^1.0.0"})
        registry.add("middle", dependencies={"evil-pkg": "*"})
        scanner = MetadataGraphScanner(adapter, StaticDenyList("evil-pkg"))

        result = await scanner.scan(pkg("app"))

        assert result.insecure_packages == ["evil-pkg"]

    async def test_root_package_itself_is_checked(self, registry, adapter):
        registry.add("evil-pkg")
        scanner = MetadataGraphScanner(adapter, StaticDenyList("evil-pkg"))

        result = await scanner.scan(pkg("evil-pkg"))

        assert result.insecure_packages == ["evil-pkg"]

    async def test_peer_and_optional_dependencies_are_checked(self, registry, adapter):
        registry.add("app", peer={"canvas": "^2.0.0"}, optional={"puppeteer": "*"})
        scanner = MetadataGraphScanner(adapter, StaticDenyList())

        result = await scanner.scan(pkg("app"))

        assert sorted(result.insecure_packages) == ["canvas", "puppeteer"]

    async def test_duplicate_findings_are_reported_once(self, registry, adapter):
        registry.add("app", dependencies={"a": "1.0.0", "b": "1.0.0"})
        registry.add("a", dependencies={"sharp": "^0.32.0"})
        registry.add("b", dependencies={"sharp": "^0.33.0"})
        scanner = MetadataGraphScanner(adapter, StaticDenyList())

        result = await scanner.scan(pkg("app"))

        assert result.insecure_packages == ["sharp"]

    async def test_unavailable_deny_list_still_uses_builtins(self, registry, adapter, deny_list):
        registry.deny_list_status = 500
        registry.add("scraper", dependencies={"puppeteer": "^21.0.0"})
        scanner = MetadataGraphScanner(adapter, deny_list)

        result = await scanner.scan(pkg("scraper"))

        assert result.insecure_packages == ["puppeteer"]
        assert result.error is None

    async def test_external_deny_list_is_used(self, registry, adapter, deny_list):
        registry.deny_list = ["evil-pkg"]
        registry.add("app", dependencies={"evil-pkg": "^1.0.0"})
        scanner = MetadataGraphScanner(adapter, deny_list)

        result = await scanner.scan(pkg("app"))

        assert result.insecure_packages == ["evil-pkg"]


class TestRootResolution:
    async def test_missing_version(self, registry, adapter):
        registry.add("left-pad", "1.3.0")
        scanner = MetadataGraphScanner(adapter, StaticDenyList())

        result = await scanner.scan(pkg("left-pad", "9.9.9"))

        assert result.error == "version not found"
        assert not result.is_insecure

    async def test_missing_package(self, registry, adapter):
        scanner = MetadataGraphScanner(adapter, StaticDenyList())

        result = await scanner.scan(pkg("does-not-exist"))

        assert result.error == "version not found"

    async def test_dist_tag_is_resolved(self, registry, adapter):
        registry.add("app", "1.0.0")
        registry.add("app", "2.0.0", dependencies={"canvas": "*"})
        scanner = MetadataGraphScanner(adapter, StaticDenyList())

        result = await scanner.scan(pkg("app", "latest"))

        assert result.insecure_packages == ["canvas"]

    async def test_root_fetch_failure_sets_error(self, registry, adapter):
        registry.failing.add("flaky")
        scanner = MetadataGraphScanner(adapter, StaticDenyList())

        result = await scanner.scan(pkg("flaky"))

        assert result.error.startswith("Failed to fetch metadata:")
        assert not result.is_insecure


class TestTraversal:
    def chain(self, registry, length: int) -> None:
        for i in range(length):
            deps = {f"p{i + 1}": "1.0.0"} if i + 1 < length else None
            registry.add(f"p{i}", dependencies=deps)

    async def test_depth_is_bounded(self, registry, adapter):
        self.chain(registry, 11)
        scanner = MetadataGraphScanner(adapter, StaticDenyList("p3", "p4"))

        result = await scanner.scan(pkg("p0"))

        assert registry.requests == ["p0", "p1", "p2"]
        assert result.insecure_packages == ["p3"]

    async def test_custom_depth(self, registry, adapter):
        self.chain(registry, 11)
        scanner = MetadataGraphScanner(adapter, StaticDenyList("p5"), max_depth=5)

        result = await scanner.scan(pkg("p0"))

        assert registry.requests == ["p0", "p1", "p2", "p3", "p4"]
        assert result.insecure_packages == ["p5"]

    async def test_cycle_terminates(self, registry, adapter):
        registry.add("a", dependencies={"b": "1.0.0"})
        registry.add("b", dependencies={"a": "1.0.0"})
        scanner = MetadataGraphScanner(adapter, StaticDenyList(), max_depth=10)

        result = await scanner.scan(pkg("a"))

        assert result.error is None
        assert registry.requested("a") == 1
        assert registry.requested("b") == 1

    async def test_shared_subtree_is_fetched_once(self, registry, adapter):
        registry.add("app", dependencies={"x": "^1.0.0", "y": "^1.0.0"})
        registry.add("x", dependencies={"shared": "^1.0.0"})
        registry.add("y", dependencies={"shared": "^1.0.0"})
        registry.add("shared")
        scanner = MetadataGraphScanner(adapter, StaticDenyList())

        await scanner.scan(pkg("app"))

        assert registry.requested("shared") == 1

    async def test_failed_edge_is_skipped(self, registry, adapter):
        registry.add("app", dependencies={"broken": "^1.0.0", "ok": "^1.0.0"})
        registry.add("ok", dependencies={"canvas": "*"})
        registry.failing.add("broken")
        scanner = MetadataGraphScanner(adapter, StaticDenyList())

        result = await scanner.scan(pkg("app"))

        assert result.error is None
        assert result.insecure_packages == ["canvas"]

    async def test_malformed_dependency_document_is_skipped(self, registry, adapter):
        registry.add("app", dependencies={"bad": "^1.0.0", "ok": "^1.0.0"})
        registry.add("ok", dependencies={"canvas": "*"})
        registry.packages["bad"] = {"dist-tags": ["oops"], "versions": "nope"}
        scanner = MetadataGraphScanner(adapter, StaticDenyList())

        result = await scanner.scan(pkg("app"))

        assert result.error is None
        assert result.insecure_packages == ["canvas"]

    async def test_missing_dependency_is_ignored(self, registry, adapter):
        registry.add("app", dependencies={"ghost": "^1.0.0"})
        scanner = MetadataGraphScanner(adapter, StaticDenyList())

        result = await scanner.scan(pkg("app"))

        assert result.error is None
        assert not result.is_insecure

    async def test_siblings_are_fetched_in_batches(self, registry, adapter):
        names = [f"dep{i}" for i in range(25)]
        registry.add("app", dependencies={name: "1.0.0" for name in names})
        for name in names:
            registry.add(name)
        registry.delay = 0.01
        scanner = MetadataGraphScanner(adapter, StaticDenyList(), batch_size=10)

        result = await scanner.scan(pkg("app"))

        assert result.error is None
        assert 1 < registry.max_in_flight <= 10
        assert all(registry.requested(name) == 1 for name in names)
