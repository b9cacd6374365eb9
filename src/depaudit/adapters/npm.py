"""NPM registry adapter."""

from __future__ import annotations

import logging
import urllib.parse

from semantic_version import NpmSpec, Version

from depaudit.adapters.base import BaseRegistryAdapter, PackageNotFoundError
from depaudit.fetcher import RetryingFetcher
from depaudit.models.schemas import DependencyDeclaration, RegistryDocument, VersionManifest

logger = logging.getLogger(__name__)

# Manifest sections merged into one declaration; later sections win.
DEPENDENCY_SECTIONS = ("dependencies", "peerDependencies", "optionalDependencies")



class NpmAdapter(BaseRegistryAdapter):
    """Adapter for the npm registry.

    Data sources:
    - Package document: {registry}/{package}
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        registry_url: str = "https://registry.npmmirror.com",
    ) -> None:
        """Initialize the adapter.

        Args:
            fetcher: Shared retrying fetcher.
            registry_url: Registry base URL. Requests to the fetcher's primary
                origin are routed through its concurrency limiter.
        """
        self._fetcher = fetcher
        self.registry_url = registry_url.rstrip("/")

    @property
    def ecosystem(self) -> str:
        return "npm"

    def document_url(self, name: str) -> str:
        """Registry URL for a package; scoped names keep the leading ``@``."""
        return f"{self.registry_url}/{urllib.parse.quote(name, safe='@')}"

    async def get_document(self, name: str) -> RegistryDocument:
        """Fetch and normalize the registry document for a package.

        Args:
            name: Package name (supports scoped packages like @org/pkg).

        Returns:
            RegistryDocument with normalized version manifests.

        Raises:
            PackageNotFoundError: If the package doesn't exist.
            FetchError: If the registry could not be reached.
        """
        url = self.document_url(name)
        data = await self._fetcher.fetch(
            url,
            primary_origin=self._fetcher.is_primary_origin(url),
        )
        if data is None:
            raise PackageNotFoundError(self.ecosystem, name)
        return parse_document(name, data)

    async def resolve_dependency(self, name: str, spec: str) -> VersionManifest | None:
        """Fetch the manifest a declared range most likely resolves to.

        This is an approximation, not a lock-file resolver.
        """
        try:
            document = await self.get_document(name)
        except PackageNotFoundError:
            logger.debug(f"Dependency {name} not found in registry")
            return None
        version = select_version(document, spec)
        if version is None:
            return None
        return document.versions.get(version)


def parse_document(name: str, data: object) -> RegistryDocument:
    """Normalize a raw registry document.

    Fields that are missing or of the wrong type are dropped so downstream
    code never sees partial manifests.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Unexpected registry document for {name}: {type(data).__name__}")

    raw_tags = data.get("dist-tags")
    if not isinstance(raw_tags, dict):
        raw_tags = {}
    dist_tags = {
        tag: version
        for tag, version in raw_tags.items()
        if isinstance(tag, str) and isinstance(version, str)
    }

    raw_versions = data.get("versions")
    if not isinstance(raw_versions, dict):
        raw_versions = {}
    versions: dict[str, VersionManifest] = {}
    for version, version_data in raw_versions.items():
        if not isinstance(version_data, dict):
            continue
        versions[version] = parse_manifest(name, version, version_data)

    return RegistryDocument(
        name=data.get("name") if isinstance(data.get("name"), str) else name,
        dist_tags=dist_tags,
        versions=versions,
    )


def parse_manifest(name: str, version: str, version_data: dict) -> VersionManifest:
    """Normalize one version entry of a registry document."""
    deprecated = version_data.get("deprecated")
    return VersionManifest(
        name=version_data.get("name") if isinstance(version_data.get("name"), str) else name,
        version=version,
        dependencies=DependencyDeclaration.merge(
            *(version_data.get(section) for section in DEPENDENCY_SECTIONS)
        ),
        deprecated=deprecated if isinstance(deprecated, str) and deprecated else None,
    )


# === Version selection ===


def parse_version(version: str) -> Version | None:
    """Parse a published version string, tolerating a leading ``v``."""
    try:
        return Version(version.strip().lstrip("vV"))
    except ValueError:
        return None


def parse_range(spec: str) -> NpmSpec | None:
    """Parse an npm range; None for tags, URLs and other non-range specs."""
    try:
        return NpmSpec(spec.strip() or "*")
    except ValueError:
        return None


def satisfies(version: str, spec: str) -> bool:
    """Whether ``version`` falls in the npm range ``spec``."""
    parsed = parse_version(version)
    npm_spec = parse_range(spec)
    if parsed is None or npm_spec is None:
        return False
    return parsed in npm_spec


def select_version(document: RegistryDocument, spec: str) -> str | None:
    """Pick the published version a declared range most likely installs.

    Order: exact version, dist-tag, highest satisfying version, ``latest``.
    """
    spec = (spec or "").strip()
    if spec in document.versions:
        return spec
    if spec in document.dist_tags:
        return document.dist_tags[spec]

    published: dict[Version, str] = {}
    for raw in document.versions:
        parsed = parse_version(raw)
        if parsed is not None:
            published[parsed] = raw

    npm_spec = parse_range(spec)
    if npm_spec is not None:
        best = npm_spec.select(published)
        if best is not None:
            return published[best]

    latest = document.latest
    if latest in document.versions:
        return latest
    if published:
        return published[max(published)]
    return None
