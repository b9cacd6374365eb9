"""Data models and schemas."""

from depaudit.models.schemas import (
    BUILTIN_UNSAFE_PACKAGES,
    AnalysisRecord,
    AnalysisResult,
    DependencyDeclaration,
    KnownBadSet,
    PackageIdentity,
    RegistryDocument,
    ScanStrategy,
    VersionManifest,
)

__all__ = [
    "BUILTIN_UNSAFE_PACKAGES",
    "AnalysisRecord",
    "AnalysisResult",
    "DependencyDeclaration",
    "KnownBadSet",
    "PackageIdentity",
    "RegistryDocument",
    "ScanStrategy",
    "VersionManifest",
]
