"""Package registry adapters."""

from depaudit.adapters.base import BaseRegistryAdapter, PackageNotFoundError
from depaudit.adapters.npm import NpmAdapter

__all__ = ["BaseRegistryAdapter", "NpmAdapter", "PackageNotFoundError"]
