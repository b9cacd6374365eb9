"""Abstract base class for package registry adapters."""

from abc import ABC, abstractmethod

from depaudit.models.schemas import RegistryDocument, VersionManifest


class BaseRegistryAdapter(ABC):
    """Base class for package registry adapters.

    Each adapter normalizes loosely-typed registry data into the strict
    manifest models used by the scanners.
    """

    @property
    @abstractmethod
    def ecosystem(self) -> str:
        """Return the ecosystem this adapter handles."""
        ...

    @abstractmethod
    async def get_document(self, name: str) -> RegistryDocument:
        """Fetch the registry document for a package.

        Args:
            name: Package name.

        Returns:
            RegistryDocument with every published version.

        Raises:
            PackageNotFoundError: If the package doesn't exist.
            FetchError: If the registry could not be reached.
        """
        ...

    async def get_manifest(self, name: str, version: str) -> VersionManifest | None:
        """Fetch the manifest of an exact version or dist-tag.

        Args:
            name: Package name.
            version: Exact version or dist-tag such as ``latest``.

        Returns:
            VersionManifest, or None if the package or version is absent.
        """
        try:
            document = await self.get_document(name)
        except PackageNotFoundError:
            return None
        resolved = document.dist_tags.get(version, version)
        return document.versions.get(resolved)

    @abstractmethod
    async def resolve_dependency(self, name: str, spec: str) -> VersionManifest | None:
        """Fetch the manifest that a declared dependency most likely installs.

        Args:
            name: Dependency name.
            spec: Declared version range.

        Returns:
            VersionManifest, or None if nothing matches.
        """
        ...


class PackageNotFoundError(Exception):
    """Raised when a package cannot be found."""

    def __init__(self, ecosystem: str, name: str) -> None:
        self.ecosystem = ecosystem
        self.name = name
        super().__init__(f"Package '{name}' not found in {ecosystem}")
