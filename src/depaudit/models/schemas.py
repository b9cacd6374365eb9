"""Pydantic models for dependency analysis data."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Native or heavyweight packages that are rejected regardless of the deny-list.
BUILTIN_UNSAFE_PACKAGES: frozenset[str] = frozenset({"sharp", "puppeteer", "canvas"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanStrategy(str, Enum):
    """Available dependency scan strategies."""

    METADATA = "metadata"  # Walk registry manifests
    SANDBOX = "sandbox"  # Install into a throwaway directory


class PackageIdentity(BaseModel):
    """A (name, version) pair identifying one published release."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str

    @field_validator("name", "version")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @property
    def key(self) -> str:
        """Cache key in ``name@version`` form."""
        return f"{self.name}@{self.version}"

    @classmethod
    def parse(cls, spec: str, default_version: str = "latest") -> "PackageIdentity":
        """Parse ``name@version`` (scoped names allowed) into an identity.

        Args:
            spec: Package spec such as ``lodash@4.17.21`` or ``@types/node@20.0.0``.
            default_version: Version to use when the spec carries none.

        Returns:
            PackageIdentity for the spec.
        """
        spec = spec.strip()
        # The leading "@" of a scoped name is not a version separator
        at = spec.rfind("@")
        if at > 0:
            return cls(name=spec[:at], version=spec[at + 1:] or default_version)
        return cls(name=spec, version=default_version)

    def __str__(self) -> str:
        return self.key


class DependencyDeclaration(BaseModel):
    """Declared dependencies of one manifest, keyed by package name."""

    ranges: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def merge(cls, *sections: dict | None) -> "DependencyDeclaration":
        """Merge manifest dependency sections; later sections win on collision."""
        ranges: dict[str, str] = {}
        for section in sections:
            if not isinstance(section, dict):
                continue
            for name, spec in section.items():
                if not isinstance(name, str) or not name:
                    continue
                ranges[name] = spec if isinstance(spec, str) else "*"
        return cls(ranges=ranges)

    @property
    def names(self) -> list[str]:
        return list(self.ranges)

    def __len__(self) -> int:
        return len(self.ranges)


class VersionManifest(BaseModel):
    """Normalized manifest of a single published version."""

    name: str
    version: str
    dependencies: DependencyDeclaration = Field(default_factory=DependencyDeclaration)
    deprecated: str | None = None

    @property
    def identity(self) -> PackageIdentity:
        return PackageIdentity(name=self.name, version=self.version)


class RegistryDocument(BaseModel):
    """Normalized registry document (``GET /{package}``)."""

    name: str
    dist_tags: dict[str, str] = Field(default_factory=dict)
    versions: dict[str, VersionManifest] = Field(default_factory=dict)

    @property
    def latest(self) -> str | None:
        return self.dist_tags.get("latest")


class KnownBadSet(BaseModel):
    """Snapshot of package names treated as insecure.

    The built-in unsafe set is always part of the snapshot, even when the
    external list could not be fetched.
    """

    model_config = ConfigDict(frozen=True)

    external: frozenset[str] = Field(default_factory=frozenset)
    loaded_at: datetime = Field(default_factory=_utcnow)
    source_available: bool = False

    def __contains__(self, name: object) -> bool:
        return name in BUILTIN_UNSAFE_PACKAGES or name in self.external

    def __len__(self) -> int:
        return len(BUILTIN_UNSAFE_PACKAGES | self.external)


class AnalysisResult(BaseModel):
    """Verdict of a dependency security scan."""

    is_insecure: bool = False
    insecure_packages: list[str] = Field(default_factory=list)
    analyzed_at: datetime = Field(default_factory=_utcnow)
    error: str | None = None
    strategy: ScanStrategy | None = None

    def flag(self, name: str) -> None:
        """Record an insecure package, keeping first-seen order."""
        self.is_insecure = True
        if name not in self.insecure_packages:
            self.insecure_packages.append(name)

    def to_record(self) -> "AnalysisRecord":
        """Map the verdict to the persisted record shape."""
        return AnalysisRecord(
            analyzed=True,
            analyzed_at=self.analyzed_at.isoformat(),
            insecure_packages=list(self.insecure_packages),
            has_error=self.error is not None,
        )


class AnalysisRecord(BaseModel):
    """Verdict fields stored on a package's catalog entry."""

    model_config = ConfigDict(populate_by_name=True)

    analyzed: bool = False
    analyzed_at: str | None = Field(default=None, alias="analyzedAt")
    insecure_packages: list[str] = Field(default_factory=list, alias="insecurePackages")
    has_error: bool = Field(default=False, alias="hasError")

    @classmethod
    def pending(cls) -> "AnalysisRecord":
        """Record for a package that has not been analyzed yet."""
        return cls()
